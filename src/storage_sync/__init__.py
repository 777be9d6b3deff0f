"""
Storage Sync

File storage synchronization and migration engine: uploads documents, images
and videos to Google Cloud Storage, mirrors them to a local backup tree, tracks
upload statistics and migrates legacy local upload directories in batches.
"""

__version__ = "0.1.0"
