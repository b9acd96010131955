import asyncio
import inspect
import os
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Set, Tuple, Union

import aiofiles
import yaml
from dotenv import dotenv_values
from watchfiles import Change, awatch

from shared.common_utils import logger
from .errors import SourceError

ChangeHandler = Callable[[Set[Tuple[Change, str]]], Union[None, Awaitable[None]]]


class OptionSource:
    """
    Supplies raw option values from the process environment and an optional
    YAML file, and reports modifications of that file to its subscribers.
    Environment values win over file values.
    """

    def __init__(
        self,
        config_file: Optional[str] = None,
        environ: Optional[Mapping[str, str]] = None,
        env_file: Optional[str] = None,
    ):
        self.config_file = Path(config_file).resolve() if config_file else None
        self.env_file = env_file
        self._environ = environ
        self._handlers: List[ChangeHandler] = []

    def environment(self) -> Dict[str, str]:
        env: Dict[str, str] = {}
        if self.env_file:
            env.update({k: v for k, v in dotenv_values(self.env_file).items() if v is not None})
        env.update(self._environ if self._environ is not None else os.environ)
        return env

    async def read_file(self) -> Dict[str, Any]:
        if self.config_file is None:
            return {}
        try:
            async with aiofiles.open(self.config_file, "r") as f:
                content = await f.read()
        except OSError as e:
            raise SourceError(
                f"config: failed to read config file {self.config_file}: {e}",
                field="config_file",
                value=str(self.config_file),
            )
        try:
            document = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise SourceError(
                f"config: could not parse config file {self.config_file}: {e}",
                field="config_file",
                value=str(self.config_file),
            )
        if document is None:
            return {}
        if not isinstance(document, dict):
            raise SourceError(
                f"config: config file {self.config_file} must contain a mapping, "
                f"got {type(document).__name__}",
                field="config_file",
                value=str(self.config_file),
            )
        return {str(key).lower(): value for key, value in document.items()}

    async def read_merged(self, bindings: Mapping[str, str]) -> Dict[str, Any]:
        """
        Returns the file document with every bound key overridden by its
        environment variable, when that variable is set and non-empty.
        """
        merged = await self.read_file()
        env = self.environment()
        for key, env_name in bindings.items():
            value = env.get(env_name)
            if value:
                merged[key] = value
        return merged

    def subscribe_to_changes(self, handler: ChangeHandler) -> None:
        self._handlers.append(handler)

    async def run(self, stop_event: asyncio.Event) -> None:
        """Watches the config file until `stop_event` is set."""
        if self.config_file is None:
            await stop_event.wait()
            return

        target = str(self.config_file)

        def only_config_file(change: Change, path: str) -> bool:
            return path == target

        logger.info(f"Watching {target} for changes")
        async for changes in awatch(
            self.config_file.parent,
            watch_filter=only_config_file,
            stop_event=stop_event,
            recursive=False,
        ):
            logger.info(f"Configuration file changed: {changes}")
            for handler in self._handlers:
                result = handler(changes)
                if inspect.isawaitable(result):
                    await result
        logger.info(f"Stopped watching {target}")
