# sitelog_api/models/__init__.py
import importlib
import pkgutil
import pathlib


def load_all():
    """Import every model module here so Flask-Migrate and create_all see the full metadata."""
    path = pathlib.Path(__file__).parent
    for mod in pkgutil.iter_modules([str(path)]):
        if not mod.ispkg:
            importlib.import_module(f"{__name__}.{mod.name}")
