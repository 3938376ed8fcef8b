"""Writes issued key/certificate material into the shared volume."""

import os
import tempfile
from pathlib import Path

from .config import ProvisioningConfig
from .errors import PersistenceError
from .logging_config import LOGGER
from .models import OutputResult

# The consuming container runs as a different user in the same pod.
OUTPUT_FILE_MODE = 0o644


class OutputWriter:
    """Persists certificate, key and optional CA bundle as separate files."""

    def __init__(self, output_dir: Path, file_mode: int = OUTPUT_FILE_MODE) -> None:
        """Initialize writer.

        Args:
            output_dir: Pre-mounted directory (usually an emptyDir)
            file_mode: Permission bits for every written file
        """
        self.output_dir = output_dir
        self.file_mode = file_mode

    @classmethod
    def from_config(cls, config: ProvisioningConfig) -> "OutputWriter":
        return cls(config.output_dir)

    def write(
        self,
        config: ProvisioningConfig,
        certificate: bytes,
        private_key_pem: bytes,
    ) -> OutputResult:
        """Write certificate, key and (when configured) CA bundle.

        Each file appears atomically; a failure part way through may leave
        earlier files in place.

        Raises:
            PersistenceError: If any file cannot be written
        """
        LOGGER.info("Writing certificate and key to %s", self.output_dir)

        cert_path = self._write_file(config.cert_name, certificate)
        key_path = self._write_file(config.key_name, private_key_pem)

        ca_path = None
        if config.ca_bundle:
            ca_path = self._write_file(config.ca_name, config.ca_bundle)

        return OutputResult(cert_path=cert_path, key_path=key_path, ca_path=ca_path)

    def _write_file(self, name: str, content: bytes) -> Path:
        path = self.output_dir / name
        tmp_name = None
        try:
            fd, tmp_name = tempfile.mkstemp(dir=self.output_dir, prefix=f".{name}.")
            with os.fdopen(fd, "wb") as tmp_file:
                tmp_file.write(content)
                tmp_file.flush()
                os.fsync(tmp_file.fileno())
            os.chmod(tmp_name, self.file_mode)
            os.replace(tmp_name, path)
        except OSError as e:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise PersistenceError(f"error while writing to file {path}: {e}") from e

        LOGGER.debug("Wrote %s", path)
        return path
