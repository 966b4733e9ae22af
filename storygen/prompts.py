"""Prompt text for the generation collaborators.

The pipeline treats all of this as opaque text; only scene ordering and
durations coming back from the models are validated.
"""

from storygen.schemas.descriptor import Labels
from storygen.schemas.storyboard import Scene

REFERENCE_PREFIX = (
    "Reference image above for visual consistency. Generate new educational image:\n\n"
)


def build_storyboard_prompt(labels: Labels, level: int, scene_count: int, style: str) -> str:
    """Instruction asking the text model for a JSON array of scene_count shots."""
    return f"""
Role: You are a professional educational content creator and storyboard artist.

Task: Create a {scene_count}-shot educational video storyboard explaining "{labels.topic}" from the chapter "{labels.chapter}" in {labels.subject} for Class {level} students.

Requirements:
1. Educational Focus: Each shot must clearly explain a concept or demonstrate a principle related to the topic.
2. Progressive Learning: Shots should build upon each other, starting from basic concepts and moving to more complex ideas.
3. Visual Clarity: Use clear, simple visuals that enhance understanding.
4. Student-Friendly: Language and visuals appropriate for Class {level} students (ages {level + 5}-{level + 6}).
5. Engagement: Include real-world examples, analogies, or applications where relevant.

SAFETY GUIDELINES:
- All content must be educational and age-appropriate for Class {level} students
- No violent, sexual, or inappropriate content
- Use fictional characters or generic descriptions (e.g., "a student", "the teacher")
- No real person names or identifiable individuals
- Focus on clear, positive, educational messaging

Output format: ONLY a raw JSON array (no markdown, no code fences, no extra text).
Each element must be a JSON object with:

- shot: integer (1..{scene_count})
- prompt: Detailed ENGLISH visual description for the shot. Include camera angle, lighting, what's shown, and any key visual elements.
- duration: integer, MUST be exactly 4, 6, or 8 (seconds)
- description: A concise English summary (1 sentence) of what's happening on screen
- shotStory: 2-3 sentences in English explaining this shot's educational purpose and how it connects to the previous shot. Use connecting words like "first", "next", "then", "finally".
- heroSubject: ONLY in shot 1. A detailed description of the main visual subject (a character, object or diagram) that will appear consistently.

Visual Style: {style}

Remember: Focus on educational clarity, step-by-step explanation, and visual learning aids suitable for Class {level} students.
"""


def build_image_prompt(style: str, render_prompt: str, hero_subject: str | None) -> str:
    hero_instruction = f"Main subject consistency: {hero_subject}" if hero_subject else ""
    return f"""
Role: Educational visual artist
Style: {style}
{hero_instruction}
Shot description: {render_prompt}
Requirements: Educational, clear, professional, 16:9 format, no text overlays, appropriate for students
"""


def build_transition_prompt(scene_a: Scene, scene_b: Scene) -> str:
    """Prompt for the clip bridging scene_a into scene_b."""
    return (
        f'Educational transition from "{scene_a.summary}" to "{scene_b.summary}". '
        f"{scene_b.render_prompt}"
    )
