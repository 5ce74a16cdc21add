from abc import ABC, abstractmethod
from concurrent.futures import Executor
from typing import List, Optional
from urllib.parse import urlparse
import asyncio
import logging
import os
import re
import time

import aiohttp

from raftaudit.core.constants import CollectionMode
from raftaudit.core.errors import NodeUnreadable
from raftaudit.core.model import NodeSnapshot
from raftaudit.core.parser import parse_snapshot


SOURCE_ARG_PATTERN = re.compile(
    r'^(?P<label>[A-Za-z0-9_.-]+)(?:@(?P<mode>live|offline))?=(?P<location>.+)$'
)


class SnapshotSource(ABC):
    """
    Abstract base class for the places a node's export dump can be read from.

    A source knows the node's label and how the dump was collected, and turns
    the dump into a parsed NodeSnapshot. Any failure to obtain the dump is
    reported as NodeUnreadable.
    """

    def __init__(self, label: str, location: str, mode: CollectionMode = CollectionMode.LIVE):
        self.label = label
        self.location = location
        self.mode = mode
        self.logger = logging.getLogger(f"raftaudit.source.{label}")

    @abstractmethod
    async def load(self, executor: Optional[Executor] = None) -> NodeSnapshot:
        """
        Read and parse the dump.

        Args:
            executor: Executor to run blocking reads and parsing in.

        Returns:
            The node's snapshot.

        Raises:
            NodeUnreadable: If the dump cannot be obtained.
        """
        pass

    def __repr__(self):
        return f"{type(self).__name__}({self.label!r}, {self.location!r}, {self.mode.value})"


class FileSource(SnapshotSource):
    """
    An export file written by the export tool, from a live node or from stopped files.
    """

    def _read_and_parse(self) -> NodeSnapshot:
        try:
            collected_at = os.path.getmtime(self.location)
            with open(self.location, 'r', encoding='utf-8') as f:
                return parse_snapshot(self.label, f, self.mode, self.location, collected_at)
        except FileNotFoundError:
            raise NodeUnreadable(self.label, f"dump not found: {self.location}")
        except (OSError, UnicodeDecodeError) as e:
            raise NodeUnreadable(self.label, f"cannot read {self.location}: {e}")

    async def load(self, executor: Optional[Executor] = None) -> NodeSnapshot:
        loop = asyncio.get_running_loop()
        self.logger.debug(f"Reading dump from {self.location}")
        return await loop.run_in_executor(executor, self._read_and_parse)


class HttpSource(SnapshotSource):
    """
    The export endpoint of a running node, fetched over HTTP.

    The endpoint is expected to answer with the same newline-delimited stream
    the export tool writes to a file.
    """

    def __init__(self, label: str, location: str, mode: CollectionMode = CollectionMode.LIVE,
                 timeout: Optional[float] = None):
        super().__init__(label, location, mode)
        self.timeout = timeout

    async def _fetch_lines(self) -> List[str]:
        client_timeout = aiohttp.ClientTimeout(total=self.timeout)
        lines: List[str] = []
        pending = b''
        async with aiohttp.ClientSession(timeout=client_timeout) as session:
            async with session.get(self.location) as response:
                response.raise_for_status()
                # Lines of a large dump can outgrow the reader's line limit,
                # so split the raw chunks here.
                async for chunk in response.content.iter_any():
                    *complete, pending = (pending + chunk).split(b'\n')
                    lines.extend(line.decode('utf-8') for line in complete)
        if pending:
            lines.append(pending.decode('utf-8'))
        return lines

    async def load(self, executor: Optional[Executor] = None) -> NodeSnapshot:
        self.logger.debug(f"Fetching dump from {self.location}")
        collected_at = time.time()
        try:
            lines = await self._fetch_lines()
        except aiohttp.ClientResponseError as e:
            raise NodeUnreadable(self.label, f"export endpoint answered {e.status}: {e.message}")
        except (aiohttp.ClientError, UnicodeDecodeError) as e:
            raise NodeUnreadable(self.label, f"cannot fetch {self.location}: {e}")

        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            executor, parse_snapshot, self.label, lines, self.mode, self.location, collected_at
        )


def _default_label(location: str) -> str:
    parsed = urlparse(location)
    if parsed.scheme in ('http', 'https'):
        return parsed.netloc
    return os.path.splitext(os.path.basename(location))[0] or location


def parse_source_arg(arg: str, default_mode: CollectionMode = CollectionMode.LIVE,
                     timeout: Optional[float] = None) -> SnapshotSource:
    """
    Build a source from a command line argument of the form ``[LABEL[@MODE]=]LOCATION``.

    Examples: ``n1=dumps/n1.txt``, ``n2@offline=loss/export-2-offline.txt``,
    ``http://10.0.0.3:28101/v1/export``.

    Args:
        arg: The argument.
        default_mode: Collection mode used when the argument names none.
        timeout: Request timeout for HTTP sources.

    Returns:
        A FileSource, or an HttpSource for http(s) URLs.
    """
    match = SOURCE_ARG_PATTERN.match(arg)
    if match:
        label = match.group('label')
        location = match.group('location')
        mode = CollectionMode(match.group('mode')) if match.group('mode') else default_mode
    else:
        location = arg
        label = _default_label(arg)
        mode = default_mode

    if urlparse(location).scheme in ('http', 'https'):
        return HttpSource(label, location, mode, timeout=timeout)
    return FileSource(label, location, mode)
