import importlib
import pkgutil

import pytest

from app import services


@pytest.mark.parametrize("name", sorted(info.name for info in pkgutil.iter_modules(services.__path__)))
def test_service_module_has_a_docstring(name):
    module = importlib.import_module(f"app.services.{name}")
    assert (module.__doc__ or "").strip(), f"app.services.{name} has no module docstring"
