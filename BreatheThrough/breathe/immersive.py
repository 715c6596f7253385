"""
Relaxation content for the immersive view: paced breathing techniques, preset scenes,
and the state of a generated background.
"""
# breathethrough/breathe/immersive.py

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BreathingTechnique:
    """A paced breathing pattern.

    Attributes:
        id (str): Stable identifier.
        label (str): Button label.
        description (str): One-line summary of the pace.
        phases (tuple): `(phase name, seconds)` pairs making up one breath cycle.
    """
    id: str
    label: str
    description: str
    phases: Tuple[Tuple[str, int], ...]

    @property
    def cycle_seconds(self) -> int:
        return sum(seconds for _, seconds in self.phases)


TECHNIQUES = (
    BreathingTechnique('coherent', 'Resonance', 'Balance (5s In, 5s Out)',
                       (('Inhale', 5), ('Exhale', 5))),
    BreathingTechnique('box', 'Box', 'Focus (4-4-4-4)',
                       (('Inhale', 4), ('Hold', 4), ('Exhale', 4), ('Hold', 4))),
    BreathingTechnique('478', '4-7-8', 'Relax (4s In, 7s Hold, 8s Out)',
                       (('Inhale', 4), ('Hold', 7), ('Exhale', 8))),
)


def get_technique(technique_id: str) -> BreathingTechnique:
    """Returns the technique with `technique_id`, or the first one when unknown."""
    return next((t for t in TECHNIQUES if t.id == technique_id), TECHNIQUES[0])


def breathing_cycle(technique_id: str) -> List[Tuple[str, int]]:
    return list(get_technique(technique_id).phases)


@dataclass(frozen=True)
class ImmersiveScene:
    id: str
    name: str
    prompt: str
    base_color: str
    description: str


SCENES = (
    ImmersiveScene('ocean', 'Ocean Shore', 'a quiet beach at sunset with gentle waves',
                   '#0c4a6e', 'Slow waves rolling onto warm sand.'),
    ImmersiveScene('forest', 'Forest Clearing', 'a sunlit forest clearing with soft moss and ferns',
                   '#14532d', 'Dappled light through tall trees.'),
    ImmersiveScene('cabin', 'Snowy Cabin', 'a quiet snowy cabin with warm light in the windows',
                   '#1e293b', 'Falling snow outside a warm refuge.'),
)


class SceneState:
    """The immersive view's background and prompt.

    Args:
        generator: An object with a `generate_scene(prompt)` coroutine returning a
            data URI or None. Without one, generation always yields None.
    """

    def __init__(self, generator):
        self.generator = generator
        self.prompt = ''
        self.background: Optional[str] = None
        self.is_generating = False

    async def generate(self, prompt: Optional[str] = None) -> Optional[str]:
        """Generates a background from `prompt` (or the current prompt).

        Blank prompts are ignored. On success the background is replaced and the prompt
        cleared; when nothing is generated the previous background stays.
        """
        if prompt is not None:
            self.prompt = prompt
        if not self.prompt.strip():
            return None
        if self.generator is None:
            logger.error("Scene generation requested but no image generator is configured")
            return None
        self.is_generating = True
        try:
            image = await self.generator.generate_scene(self.prompt)
        finally:
            self.is_generating = False
        if image:
            self.background = image
            self.prompt = ''
        else:
            logger.info("No image generated; keeping the current background.")
        return image
