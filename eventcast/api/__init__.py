from .app import create_app, attach_engine

__all__ = ['create_app', 'attach_engine']
