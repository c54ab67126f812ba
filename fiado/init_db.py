from fiado.infra.db import engine
from fiado.infra.models import Base


def main():
    Base.metadata.create_all(bind=engine)
    print("Tabelas criadas!")


if __name__ == "__main__":
    main()
