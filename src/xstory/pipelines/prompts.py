"""System prompts and ``{{placeholder}}`` templates for pipeline nodes."""

from __future__ import annotations

import re
from typing import Mapping

__all__ = [
    "SYSTEM_SCREENWRITER",
    "SYSTEM_CONTINUITY_CHECKER",
    "SYSTEM_EVALUATOR",
    "SYSTEM_BRAINSTORMER",
    "SYSTEM_DIALOGUE_COACH",
    "SYSTEM_CONTINUITY_AUDITOR",
    "TEMPLATES",
    "render_template",
]

_PLACEHOLDER_RE = re.compile(r"\{\{(\w+)\}\}")


def render_template(template: str, variables: Mapping[str, object]) -> str:
    """Substitute ``{{name}}`` placeholders; unknown names are left untouched."""

    def _replace(match: re.Match[str]) -> str:
        key = match.group(1)
        return str(variables[key]) if key in variables else match.group(0)

    return _PLACEHOLDER_RE.sub(_replace, template)


SYSTEM_SCREENWRITER = (
    "You are a professional screenwriter and story consultant. You write vivid, emotionally "
    "resonant scenes with sharp dialogue and purposeful action. You follow established story "
    "canon precisely and never contradict world rules or character histories unless explicitly asked."
)

SYSTEM_CONTINUITY_CHECKER = (
    "You are a meticulous continuity editor. Compare a draft scene against established canon "
    "facts and world rules. Report every contradiction, no matter how small, and cite the facts."
)

SYSTEM_EVALUATOR = (
    "You are a script editor evaluating a scene draft for quality. Assess format, beat coverage, "
    "pacing, tone consistency and dialogue. Give a structured evaluation with a pass/fail verdict "
    "and specific suggestions."
)

SYSTEM_BRAINSTORMER = (
    "You are a creative story consultant specialising in plot structure and beat sheets. You "
    "generate bold, surprising, emotionally resonant beats that respect established canon and are "
    "grounded in character motivation and thematic coherence."
)

SYSTEM_DIALOGUE_COACH = (
    "You are a dialogue specialist and voice coach. You analyse speech patterns, refine dialogue "
    "for authenticity and make sure every character has a distinct voice, paying attention to "
    "subtext, rhythm and power dynamics."
)

SYSTEM_CONTINUITY_AUDITOR = (
    "You are an obsessive continuity auditor for a complex narrative. Cross-reference every detail "
    "against the canon database, flag inconsistencies and timeline errors, and propose concrete "
    "fixes with minimal disruption to the existing text."
)


TEMPLATES: dict[str, str] = {
    # Scene draft -------------------------------------------------------
    "identify_context": """Analyze the following outline and identify:
1. The scope (world, season, episode, scene)
2. Key characters involved
3. Key locations referenced
4. Relevant story arcs and threads
5. Any items or rules that apply

Outline:
{{outline}}

Pinned entities:
{{pinned_entities}}

Return a JSON object with arrays: characters, locations, arcs, rules, items.""",
    "gather_constraints": """Given these entities from the knowledge store, summarize the active constraints that the upcoming scene draft must respect.

Entities and their current state:
{{entity_details}}

World rules in scope:
{{world_rules}}

Character states at this point:
{{character_states}}

Summarize the constraints as a numbered list. Each constraint should name its source entity.""",
    "generate_draft": """Write a scene draft based on the following inputs.

## Scene Outline
{{outline}}

## Constraints (must not violate)
{{constraints}}

## Character Voice & Style Reference
{{rag_snippets}}

## Entity Context
{{entity_context}}

## Additional Instructions
{{user_instructions}}

Write the scene in screenplay or prose format with action lines, attributed dialogue and transitions. Stay within the established canon.""",
    "continuity_check": """Compare the following draft scene against the established canon constraints and report any contradictions.

## Draft Scene
{{draft}}

## Active Constraints
{{constraints}}

## Entity Details
{{entity_details}}

Output a JSON array with one object per contradiction:
[{ "fact": "the canon fact", "violation": "what the draft says", "severity": "major|minor", "suggestion": "how to fix" }]

If there are no contradictions, return: []""",
    "propose_deltas": """Identify NEW facts, state changes or relationships this scene draft introduces. These are candidate updates to the story canon.

## Draft Scene
{{draft}}

## Known Entity States
{{entity_details}}

Output a JSON array:
[{ "entityName": "name", "entityType": "Character|Location|Item|...", "change": "the new fact or state change", "confidence": "high|medium|low" }]

If nothing new is introduced, return: []""",
    "revise_draft": """Revise the scene draft below to fix the listed continuity issues. Preserve as much of the draft as possible.

## Original Draft
{{draft}}

## Contradictions to Fix
{{contradictions}}

## Active Constraints
{{constraints}}

Write the revised scene, changing only what resolves the contradictions.""",
    "evaluate_output": """Evaluate this scene draft and return a JSON object.

## Scene Draft
{{draft}}

## Original Outline
{{outline}}

Criteria: format, beat coverage, length, tone and dialogue.

Return JSON:
{
  "pass": true/false,
  "score": 0-100,
  "format": { "pass": true/false, "notes": "..." },
  "beatCoverage": { "pass": true/false, "coveredBeats": [], "missedBeats": [] },
  "length": { "pass": true/false, "wordCount": 0, "notes": "..." },
  "tone": { "pass": true/false, "notes": "..." },
  "dialogue": { "pass": true/false, "notes": "..." },
  "suggestions": []
}""",
    # Brainstorm --------------------------------------------------------
    "brainstorm_analyze": """Analyze the following story context and identify the current narrative state.

## Story Context / Premise
{{premise}}

## Known Characters
{{characters}}

## Known Arcs & Threads
{{arcs}}

## World Rules
{{world_rules}}

Summarize where the characters are emotionally, which conflicts are active and which threads are unresolved.""",
    "brainstorm_generate": """Generate {{count}} possible story beats for the next section of this narrative.

## Current Story State
{{story_state}}

## Tone / Genre
{{tone}}

## User Direction
{{user_direction}}

## Constraints (cannot violate)
{{constraints}}

Return a JSON array:
[{ "summary": "...", "expansion": "...", "characters": [], "stakes": "...", "threads": [], "surpriseFactor": "low|medium|high" }]""",
    "brainstorm_expand": """Expand this selected story beat into a detailed beat sheet of 5-8 sub-beats.

## Selected Beat
{{selected_beat}}

## Story Context
{{story_state}}

## Constraints
{{constraints}}

Return a JSON array:
[{ "subBeat": "...", "type": "setup|rising|turning|climax|falling", "characters": [], "notes": "..." }]""",
    # Dialogue ----------------------------------------------------------
    "dialogue_analyze": """Extract the dialogue in the following text and describe each speaking character's voice.

## Text to Analyze
{{text}}

## Known Character Profiles
{{character_profiles}}

Return JSON:
{ "characters": [{ "name": "...", "voiceProfile": { "vocabulary": "...", "sentenceStyle": "...", "speechPatterns": "...", "emotionalTone": "...", "powerDynamic": "..." }, "sampleLines": [] }] }""",
    "dialogue_refine": """Refine the dialogue in the following passage so every character has a distinct, consistent voice.

## Original Passage
{{passage}}

## Character Voice Profiles
{{voice_profiles}}

## Reference Samples
{{reference_samples}}

## Refinement Instructions
{{instructions}}

Preserve the meaning and plot function of each line and keep action lines mostly unchanged. Return the refined passage.""",
    "dialogue_evaluate": """Evaluate the dialogue refinement.

## Original Passage
{{original}}

## Refined Passage
{{refined}}

## Character Voice Profiles
{{voice_profiles}}

Return JSON:
{ "pass": true/false, "score": 0-100, "voiceDistinctiveness": { "pass": true/false, "notes": "..." }, "subtext": { "pass": true/false, "notes": "..." }, "naturalness": { "pass": true/false, "notes": "..." }, "consistency": { "pass": true/false, "notes": "..." }, "plotFunction": { "pass": true/false, "notes": "..." }, "suggestions": [] }""",
    # Continuity repair -------------------------------------------------
    "continuity_audit": """Audit the following text against the established canon.

## Text to Audit
{{text}}

## Canon Facts
{{canon_facts}}

## Timeline / Sequence
{{timeline}}

## World Rules
{{world_rules}}

Return a JSON array with one object per issue:
[{ "line": "approximate location", "issue": "description", "category": "character|timeline|location|object|rule|relationship|dialogue", "severity": "critical|major|minor", "canonSource": "contradicted fact", "suggestedFix": "how to fix it" }]""",
    "continuity_repair": """Fix the continuity issues in this text with minimal, surgical edits.

## Original Text
{{text}}

## Issues to Fix
{{issues}}

## Canon Facts (authoritative)
{{canon_facts}}

Fix only the identified issues, preserve the author's voice and mark each fix with [FIXED: description]. Return the repaired text.""",
    "continuity_report": """Write a continuity report summarizing the audit and repairs.

## Issues Found
{{issues}}

## Repairs Made
{{repairs}}

## Remaining Concerns
{{remaining}}

Return JSON:
{ "summary": { "total": 0, "byCategory": {}, "bySeverity": {}, "repaired": 0, "unresolved": 0 }, "repairs": [], "unresolved": [], "recommendations": [] }""",
}
