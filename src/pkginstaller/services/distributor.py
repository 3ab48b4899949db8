"""Image distribution: get platform images into the destination registry."""

import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable, Iterable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from pkginstaller.config import Settings
from pkginstaller.errors import (
    ImageDistributionError,
    ImageStreamError,
    OperationCancelledError,
)
from pkginstaller.models.package import PackageImage
from pkginstaller.models.status import ConditionType
from pkginstaller.services.engine import ImageEngine, StreamMessage
from pkginstaller.services.install_pass import ImageMapping, InstallPass
from pkginstaller.utils.images import (
    DEFAULT_TAG,
    image_full_name,
    list_image_archives,
    new_image_with_new_domain,
    parse_loaded_image,
    parse_reference,
)

T = TypeVar("T")
_END = object()


class ImageDistributor:
    """Moves images to the destination registry with per-image retries.

    Two strategies, chosen by install mode:

    - pull_and_push: pull each mapped image from the source registry
      (unless already present locally), tag it for the destination, push it
    - load_and_push: load each image archive of the unpacked bundle, tag it
      under the destination domain, push it

    Every attempt starts from scratch and images already pushed in an
    earlier pass are pushed again; the registry makes that cheap.
    """

    def __init__(self, engine: ImageEngine, settings: Settings):
        self.logger = logging.getLogger("pkginstaller.distributor")
        self.engine = engine
        self.pull_attempts = settings.pull_retry_attempts
        self.pull_delay = settings.pull_retry_delay
        self.load_attempts = settings.load_retry_attempts
        self.load_delay = settings.load_retry_delay

    async def distribute(self, install_pass: InstallPass) -> None:
        if install_pass.bundle_required:
            self.logger.info("Start load and push images")
            await self.load_and_push(install_pass)
        else:
            self.logger.info("Start pull and push images")
            await self.pull_and_push(install_pass)

    async def pull_and_push(self, install_pass: InstallPass) -> None:
        """Pull, tag and push every image of the pass's image mapping.

        Raises:
            ImageDistributionError: If an image fails on every attempt
            OperationCancelledError: If the pass was cancelled
            PersistenceError: If progress cannot be written
        """
        status = install_pass.package.status
        status.images_number = len(install_pass.images)
        status.images_pushed = []

        for count, mapping in enumerate(install_pass.images, start=1):
            await self._with_retry(
                self.pull_attempts,
                self.pull_delay,
                f"pull and push {mapping.source}",
                lambda mapping=mapping: self._pull_tag_push(mapping, install_pass),
            )
            self._record_pushed(install_pass, mapping.destination, count)

    async def load_and_push(self, install_pass: InstallPass) -> None:
        """Load, tag and push every image archive of the unpacked bundle.

        Raises:
            ImageDistributionError: If an archive fails on every attempt
            OperationCancelledError: If the pass was cancelled
            PersistenceError: If progress cannot be written
        """
        archives = list_image_archives(install_pass.unpack_dir)
        status = install_pass.package.status
        status.images_number = len(archives)
        status.images_pushed = []
        if not archives:
            self.logger.warning(f"No image archives found under {install_pass.unpack_dir}")

        for count, archive in enumerate(archives, start=1):
            destination = await self._with_retry(
                self.load_attempts,
                self.load_delay,
                f"load and push {archive}",
                lambda archive=archive: self._load_tag_push(archive, install_pass),
            )
            self._record_pushed(install_pass, destination, count)

    async def _with_retry(
        self,
        attempts: int,
        delay: float,
        description: str,
        operation: Callable[[], Awaitable[T]],
    ) -> T:
        try:
            async for attempt in AsyncRetrying(
                # Task cancellation is a BaseException and must never be retried
                retry=retry_if_exception_type(Exception)
                & retry_if_not_exception_type(OperationCancelledError),
                stop=stop_after_attempt(attempts),
                wait=wait_fixed(delay),
                before_sleep=lambda state: self.logger.warning(
                    f"{description} failed (attempt {state.attempt_number}/{attempts}): "
                    f"{state.outcome.exception()}"
                ),
            ):
                with attempt:
                    return await operation()
        except RetryError as e:
            cause = e.last_attempt.exception()
            self.logger.error(f"{description} failed after {attempts} attempts: {cause}")
            raise ImageDistributionError(f"{description}: {cause}") from cause
        raise ImageDistributionError(f"{description}: no attempt made")

    def _record_pushed(self, install_pass: InstallPass, image: str, count: int) -> None:
        status = install_pass.package.status
        status.images_pushed.append(PackageImage(name=image))
        progress = count * 100 // max(1, status.images_number)
        if install_pass.conditions.set_progress(ConditionType.PUSH_IMAGE, progress):
            install_pass.conditions.persist()
        self.logger.info(f"Successfully pushed image {image} ({count}/{status.images_number})")

    async def _pull_tag_push(self, mapping: ImageMapping, install_pass: InstallPass) -> None:
        exists = await self._image_exists(mapping.source)
        if not exists:
            self.logger.info(f"Image {mapping.source} does not exist locally, start pulling")
            await self._pull(mapping.source, install_pass)
        await self._tag(mapping.source, mapping.destination)
        await self._push(mapping.destination, install_pass)

    async def _load_tag_push(self, archive: Path, install_pass: InstallPass) -> str:
        image = await self._load(archive, install_pass)
        try:
            destination = new_image_with_new_domain(image, install_pass.push_domain)
        except ValueError as e:
            raise ImageDistributionError(f"parse loaded image name {image!r}: {e}") from e
        await self._tag(image, destination)
        await self._push(destination, install_pass)
        return destination

    async def _image_exists(self, image: str) -> bool:
        try:
            full_name = image_full_name(image)
        except ValueError as e:
            raise ImageDistributionError(f"parse image {image}: {e}") from e
        summaries = await asyncio.to_thread(self.engine.list_images, full_name)
        return len(summaries) > 0

    async def _pull(self, image: str, install_pass: InstallPass) -> None:
        self.logger.info(f"Start pull image {image}")
        repository, tag = parse_reference(image)
        messages = await asyncio.to_thread(
            self.engine.pull, repository, tag or DEFAULT_TAG, install_pass.pull_auth
        )
        await self._drain(messages, install_pass.cancel_event)
        self.logger.info(f"Success pull image {image}")

    async def _tag(self, source: str, destination: str) -> None:
        await asyncio.to_thread(self.engine.tag, source, destination)

    async def _push(self, image: str, install_pass: InstallPass) -> None:
        self.logger.info(f"Start push image {image}")
        repository, tag = parse_reference(image)
        messages = await asyncio.to_thread(
            self.engine.push, repository, tag, install_pass.push_auth
        )
        await self._drain(messages, install_pass.cancel_event)
        self.logger.info(f"Success push image {image}")

    async def _load(self, archive: Path, install_pass: InstallPass) -> str:
        self.logger.info(f"Start loading image from {archive}")
        loaded = []

        def collect(message: StreamMessage) -> None:
            name = parse_loaded_image(message.get("stream") or "")
            if name:
                loaded.append(name)

        with open(archive, "rb") as f:
            messages = await asyncio.to_thread(self.engine.load, f)
            await self._drain(messages, install_pass.cancel_event, collect)

        if not loaded:
            raise ImageDistributionError(f"no loaded image name reported for {archive}")
        self.logger.info(f"Success loading image {loaded[-1]}")
        return loaded[-1]

    async def _drain(
        self,
        messages: Iterable[StreamMessage],
        cancel_event: asyncio.Event,
        on_message: Optional[Callable[[StreamMessage], None]] = None,
    ) -> None:
        """Consume a progress stream message by message.

        Raises:
            ImageStreamError: If a message carries an error
            OperationCancelledError: If the pass is cancelled mid-stream
        """
        if messages is None:
            return
        iterator = iter(messages)
        while True:
            if cancel_event.is_set():
                raise OperationCancelledError("image operation cancelled")
            message = await asyncio.to_thread(next, iterator, _END)
            if message is _END:
                return
            if not isinstance(message, dict):
                continue
            error = message.get("error")
            if error:
                raise ImageStreamError(f"error detail: {error}")
            if on_message is not None:
                on_message(message)
