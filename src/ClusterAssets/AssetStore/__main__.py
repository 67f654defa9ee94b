"""Allow ``python -m ClusterAssets.AssetStore``."""

from .cli import app

if __name__ == "__main__":
    app()
