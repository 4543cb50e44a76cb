"""humanbrowse CLI package."""
