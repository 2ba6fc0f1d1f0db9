"""
Self-update verifier.

    1. fetch + parse the version descriptor
    2. not newer than the running version -> up to date, stop
    3. download the build beside the executable as <exe>.download
    4. SHA-256 of the download must equal the descriptor digest
    5. fetch the signature envelope and run the trust check

Only a build that passes 4 and 5 is ever offered for installation. Any
failure deletes the downloaded file before the result is returned.
"""

from __future__ import annotations

import codecs
import logging
import sys
from pathlib import Path
from typing import Optional

from .. import __version__
from ..cancel import CancelToken
from ..config import PackSyncSettings
from ..fetcher import ContentFetcher, FetchCanceled, FetchError
from ..hashing import DigestMismatchError, HashingFileSink, digests_equal
from ..models import FetchTimeouts, UpdateResult
from ..sync.atomic import discard
from .descriptor import DescriptorError, is_newer, parse_version_descriptor
from .trust import SignatureTrustChecker, TrustError

logger = logging.getLogger("packsync.update.verifier")

DOWNLOAD_SUFFIX = ".download"


def default_executable(settings: PackSyncSettings) -> Optional[Path]:
    """The binary an update would replace.

    The configured path wins; a frozen build replaces itself; a plain
    interpreter run has nothing to replace.
    """
    if settings.update.executable:
        return Path(settings.update.executable).expanduser()
    if getattr(sys, "frozen", False):
        return Path(sys.executable)
    return None


class SelfUpdateVerifier:
    """Checks for, downloads and vets a newer build.

    Args:
        settings: Loaded settings (update URLs, limits, timeouts).
        fetcher: Transport for the descriptor, build and envelope.
        trust: Signature and pinned-signer checker.
        cancel: Cooperative cancellation token.
        local_version: Version of the running build.
        executable: Binary to be replaced; see ``default_executable``.
    """

    def __init__(
        self,
        settings: PackSyncSettings,
        fetcher: ContentFetcher,
        trust: SignatureTrustChecker,
        cancel: CancelToken,
        local_version: str = __version__,
        executable: Optional[Path] = None,
    ) -> None:
        self._settings = settings
        self._fetcher = fetcher
        self._trust = trust
        self._cancel = cancel
        self._local_version = local_version
        self._executable = executable or default_executable(settings)
        t = settings.timeouts
        self._text_timeouts = FetchTimeouts(connect=t.text_connect, total=t.text_total)
        self._file_timeouts = FetchTimeouts(connect=t.file_connect, total=t.file_total)

    def check(self) -> UpdateResult:
        """Run the whole check. Never raises for expected failures."""
        result = UpdateResult(local_version=self._local_version)
        try:
            return self._check(result)
        except FetchCanceled:
            result.error = "Update check canceled."
            logger.info(result.error)
            return result

    def _check(self, result: UpdateResult) -> UpdateResult:
        upd = self._settings.update
        limits = self._settings.limits

        try:
            raw = self._fetcher.fetch_to_buffer(
                upd.version_url, self._cancel, limits.descriptor_max_bytes, self._text_timeouts
            )
        except FetchError as exc:
            return self._fail(result, f"Failed to download version descriptor: {exc}")

        if raw.startswith(codecs.BOM_UTF8):
            raw = raw[len(codecs.BOM_UTF8):]
        try:
            descriptor = parse_version_descriptor(raw.decode("utf-8"))
        except UnicodeDecodeError:
            return self._fail(result, "Version descriptor is not valid UTF-8 text")
        except DescriptorError as exc:
            return self._fail(result, f"Version descriptor rejected: {exc}")
        result.remote_version = descriptor.version
        result.expected_digest = descriptor.digest

        try:
            newer = is_newer(descriptor.version, self._local_version)
        except DescriptorError as exc:
            return self._fail(result, f"Local version cannot be compared: {exc}")
        if not newer:
            result.ok = True
            logger.info(
                "Up to date (local %s, remote %s)", self._local_version, descriptor.version
            )
            return result

        result.different = True
        logger.info("Update available: %s -> %s", self._local_version, descriptor.version)
        if self._executable is None:
            return self._fail(result, "No executable configured to update")

        temp = self._executable.with_name(self._executable.name + DOWNLOAD_SUFFIX)
        try:
            self._download(upd.binary_url, temp, descriptor.digest)
            envelope = self._fetcher.fetch_to_buffer(
                upd.effective_signature_url,
                self._cancel,
                limits.signature_max_bytes,
                self._text_timeouts,
            )
            signer = self._trust.check(temp, envelope)
        except FetchError as exc:
            discard(temp)
            return self._fail(result, f"Update download failed: {exc}")
        except (DigestMismatchError, TrustError) as exc:
            discard(temp)
            return self._fail(result, f"Update rejected: {exc}")
        except OSError as exc:
            discard(temp)
            return self._fail(result, f"Update could not be saved: {exc}")
        except BaseException:
            discard(temp)
            raise

        result.ok = True
        result.downloaded_temp_path = temp
        result.signer_fingerprint = signer.fingerprint
        return result

    def _download(self, url: str, temp: Path, expected: str) -> None:
        temp.parent.mkdir(parents=True, exist_ok=True)
        with open(temp, "wb") as fh:
            sink = HashingFileSink(fh)
            self._fetcher.fetch_to_sink(url, sink, self._cancel, self._file_timeouts)
        actual = sink.hexdigest()
        if not digests_equal(actual, expected):
            raise DigestMismatchError(expected, actual)

    @staticmethod
    def _fail(result: UpdateResult, message: str) -> UpdateResult:
        result.ok = False
        result.error = message
        logger.warning(message)
        return result
