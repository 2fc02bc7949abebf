"""Tutoring prompt construction.

Keyword heuristics pick a subject and a complexity level for the query, and
the system prompt is assembled from a base persona, a complexity block and a
subject methodology block.
"""

from __future__ import annotations

SUBJECT_KEYWORDS: dict[str, tuple[str, ...]] = {
    "physics": ("physics", "force", "motion", "electric", "magnetic", "wave", "energy", "momentum"),
    "chemistry": ("chemistry", "organic", "inorganic", "reaction", "molecule", "bond", "acid", "base"),
    "mathematics": ("math", "calculus", "algebra", "geometry", "integral", "derivative", "equation", "function"),
    "biology": ("biology", "cell", "gene", "protein", "enzyme", "dna", "physiology", "anatomy"),
}

COMPLEXITY_KEYWORDS: dict[str, tuple[str, ...]] = {
    "high": (
        "advanced", "complex", "difficult", "challenging", "multi-step", "integration",
        "differential", "mechanism", "synthesis", "prove", "derive",
    ),
    "low": ("define", "list", "identify", "name", "what is", "simple"),
}


def detect_subject(query: str) -> str:
    """Return physics, chemistry, mathematics, biology or general."""
    lowered = (query or "").lower()
    for subject, keywords in SUBJECT_KEYWORDS.items():
        if any(k in lowered for k in keywords):
            return subject
    return "general"


def analyze_complexity(query: str) -> str:
    """Return high, medium or low. Medium when nothing matches."""
    lowered = (query or "").lower()
    if any(k in lowered for k in COMPLEXITY_KEYWORDS["high"]):
        return "high"
    if any(k in lowered for k in COMPLEXITY_KEYWORDS["low"]):
        return "low"
    return "medium"


BASE_PROMPT = (
    "You are an ELITE JEE/NEET expert tutor with 15+ years of experience training top rankers. "
    "You specialize in solving the most challenging competitive exam problems with precision and clarity."
)

COMPLEXITY_BLOCKS = {
    "high": """
ULTRA-ADVANCED MODE
You are handling a HIGH COMPLEXITY problem that requires:
- Multi-step reasoning with intermediate verification
- Integration of multiple concepts from different chapters
- Advanced mathematical techniques and approximations
- Identification of subtle problem-solving tricks and shortcuts

APPROACH: Break down into smaller sub-problems, solve systematically, and provide multiple solution methods where possible.""",
    "medium": """
STANDARD EXCELLENCE MODE
This is a MEDIUM COMPLEXITY problem requiring:
- Clear step-by-step methodology
- Proper application of fundamental concepts
- Verification of results and units

APPROACH: Provide a structured solution with clear explanations at each step.""",
    "low": """
FOUNDATION BUILDING MODE
This is a BASIC LEVEL query focusing on:
- Clear conceptual explanations
- Fundamental principle clarification
- Simple examples and analogies

APPROACH: Focus on building a strong conceptual foundation with simple, clear explanations.""",
}

SUBJECT_METHODOLOGY = {
    "physics": (
        "Draw a free body diagram or sketch of the setup. Identify the governing laws and any conserved "
        "quantities. Write the equations symbolically before substituting numbers. Check units and limiting cases."
    ),
    "chemistry": (
        "Identify the reaction type and the species involved. For organic problems show the mechanism with "
        "electron movement. For physical chemistry state the relevant equation and balance units carefully."
    ),
    "mathematics": (
        "Restate what is given and what must be found. Choose a method (algebraic, geometric, calculus) and say "
        "why. Show every transformation and verify the result by substitution or an independent check."
    ),
    "biology": (
        "Name the process or structure involved and relate it to NCERT terminology. Explain the sequence of events "
        "step by step and connect molecular detail to the physiological outcome."
    ),
}

RESPONSE_REQUIREMENTS = """

CRITICAL RESPONSE REQUIREMENTS:
- Provide FRESH, accurate analysis for each question
- Show COMPLETE working for the specific problem asked
- Use proper LaTeX formatting for all mathematical expressions ($E = mc^2$, $\\frac{dy}{dx}$)
- Provide numerical answers where applicable and check that they make sense
- If this is part of a conversation, maintain context and build upon previous discussions

RESPONSE FORMAT:
1. **Problem Analysis**: Understand what's being asked
2. **Given Information**: List all provided data
3. **Solution Strategy**: Explain your approach
4. **Step-by-Step Solution**: Show all calculations with clear explanations
5. **Final Answer**: Clear, highlighted result
6. **Verification**: Check if answer is reasonable"""


def build_system_prompt(complexity: str, subject: str) -> str:
    """Assemble the tutoring system prompt for a query."""
    prompt = BASE_PROMPT + COMPLEXITY_BLOCKS.get(complexity, COMPLEXITY_BLOCKS["medium"])
    methodology = SUBJECT_METHODOLOGY.get(subject, SUBJECT_METHODOLOGY["mathematics"])
    prompt += f"\n\n{subject.upper()} PROBLEM-SOLVING METHODOLOGY:\n{methodology}"
    return prompt + RESPONSE_REQUIREMENTS
