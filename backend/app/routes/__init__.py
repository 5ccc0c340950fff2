from importlib import import_module

modules = [
    'labs',
    'sops',
    'knowledge',
    'submissions',
    'experiments',
    'ballots',
    'training',
    'sync',
]

for m in modules:
    import_module(f'.{m}', __name__)

__all__ = modules
