"""Sequential scene image rendering with visual continuity.

- Scene 1 is rendered from its prompt alone
- Later scenes are conditioned on the most recent generated image and on
  scene 1's hero subject description
- A scene whose render fails gets a labeled placeholder instead of aborting
  the run
- Processing is sequential, with an optional rate-limit delay between scenes
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from storygen.config import settings
from storygen.prompts import build_image_prompt
from storygen.schemas.storyboard import ImagePayload, RenderedScene, Scene
from storygen.services.collaborators.base import ImageGenerator
from storygen.services.file_manager import placeholder_reference, to_data_url

logger = logging.getLogger(__name__)


class SceneRenderer:
    """Render each scene to a still image, in index order.

    Args:
        image_generator: Image-generation collaborator
        style: Shared visual style text
        delay: Seconds to wait between scenes (rate limiting)
        sleep: Awaitable sleep (injectable for tests)
    """

    def __init__(
        self,
        image_generator: ImageGenerator,
        *,
        style: Optional[str] = None,
        delay: Optional[float] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ) -> None:
        self._image_generator = image_generator
        self._style = style or settings.pipeline.visual_style
        self._delay = settings.pipeline.image_gen_delay if delay is None else delay
        self._sleep = sleep or asyncio.sleep

    async def render(self, scenes: list[Scene]) -> list[RenderedScene]:
        """Return one RenderedScene per scene, same length and order."""
        ordered = sorted(scenes, key=lambda scene: scene.index)
        hero_subject = ordered[0].hero_subject_description if ordered else None

        rendered: list[RenderedScene] = []
        reference: Optional[ImagePayload] = None

        for position, scene in enumerate(ordered):
            if position > 0 and self._delay > 0:
                await self._sleep(self._delay)

            prompt = build_image_prompt(self._style, scene.render_prompt, hero_subject)

            try:
                image = await self._image_generator.generate_image(
                    prompt,
                    reference if scene.index > 1 else None,
                )
            except Exception as e:
                logger.warning(
                    f"Scene {scene.index}: image generation failed ({type(e).__name__}: {e}), "
                    f"using placeholder"
                )
                image = None
            else:
                if image is None:
                    logger.warning(f"Scene {scene.index}: no image generated, using placeholder")

            if image is None:
                rendered.append(RenderedScene(
                    **scene.model_dump(),
                    image_reference=placeholder_reference(scene.index),
                    placeholder=True,
                ))
                continue

            reference = image
            rendered.append(RenderedScene(
                **scene.model_dump(),
                image_reference=to_data_url(image),
            ))
            logger.info(f"Scene {scene.index}: image generated")

        return rendered
