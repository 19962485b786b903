import os

from sitelog_api import create_app

app = create_app(os.getenv("SITELOG_CONFIG") or None)
