APP_NAME = "Arch Desktop Setup"
__version__ = "1.0.0"
