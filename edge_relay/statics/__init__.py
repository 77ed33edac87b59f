from .files import serve_fallback, serve_static

__all__ = ["serve_fallback", "serve_static"]
