import logging
import os

logger = logging.getLogger(__name__)


class LocalStorage:
    """Flat directory holding uploaded originals and thumbnails.

    Filenames are generated by the app (`<id>.jpg`, `thumb_<id>.jpg`), never
    taken from the client, but every path is still resolved and checked to
    stay inside `base_dir`.
    """

    def __init__(self, base_dir: str):
        self.base_dir = os.path.abspath(base_dir)
        os.makedirs(self.base_dir, exist_ok=True)

    def path_for(self, filename: str) -> str:
        path = os.path.abspath(os.path.join(self.base_dir, filename))
        if os.path.dirname(path) != self.base_dir:
            raise ValueError(f"Invalid storage filename: {filename!r}")
        return path

    def exists(self, filename: str) -> bool:
        return os.path.isfile(self.path_for(filename))

    def save_file(self, filename: str, data: bytes) -> str:
        """Write `data` atomically and return the absolute path."""
        path = self.path_for(filename)
        tmp_path = path + ".part"
        with open(tmp_path, 'wb') as f:
            f.write(data)
        os.replace(tmp_path, path)
        logger.debug("Stored %s (%d bytes)", filename, len(data))
        return path

    def delete_file(self, filename: str) -> bool:
        """Remove a stored file. Returns False if it was already gone."""
        path = self.path_for(filename)
        try:
            os.remove(path)
        except FileNotFoundError:
            logger.debug("File %s already absent from storage", filename)
            return False
        logger.debug("Deleted %s from storage", filename)
        return True
