__version__ = "0.1.0"

APP_DESCRIPTION = "Stage iOS signing credentials for a build"
