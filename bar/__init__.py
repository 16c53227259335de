"""BAR static site generator.

This package builds a static website from a tree of Markdown documents, a
Jinja2 template set and a ``config.yaml`` file.

The build is driven by a small orchestration core:
- ArtifactCache: content-addressed on-disk cache for downloaded images and captions.
- AssetResolver: three-tier static file overlay with cache-busting URLs.
- PageRegistry: pages declared by templates while rendering, drained by a fixed-point loop.
- BuildOrchestrator: wires the above to the content parser and the template engine.

The main entry point is the CLI module, which provides commands for building
a site, clearing caches and scaffolding new articles.
"""

__all__ = ["__version__"]
__version__ = "0.1.0"
