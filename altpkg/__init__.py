"""altpkg: backend de gerenciador de pacotes com DB transacional e instalação em lote."""

__version__ = "0.2.0"
