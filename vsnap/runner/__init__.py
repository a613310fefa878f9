"""In-container archiver executed by the vsnap helper image."""
