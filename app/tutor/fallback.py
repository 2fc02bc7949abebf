"""Local Fallback Generator: template guidance when no provider answers.

Output is deterministic for a given query: the same query always yields the
same Markdown text.
"""

from __future__ import annotations

from dataclasses import dataclass

from app.tutor.prompts import detect_subject

FALLBACK_MODEL = "local-fallback"
FALLBACK_SPEED = "Instant"


@dataclass(frozen=True)
class _SubjectTemplate:
    title: str
    tips: tuple[str, ...]
    approach: str
    strategies: tuple[str, ...]


_TEMPLATES = {
    "physics": _SubjectTemplate(
        title="Advanced Physics",
        tips=(
            "**Mechanics:** complex oscillations, rotational dynamics, collision problems",
            "**Electromagnetism:** electromagnetic induction, AC circuits, field calculations",
            "**Modern Physics:** photoelectric effect, atomic structure, nuclear reactions",
            "**Thermodynamics:** heat engines, entropy, kinetic theory",
        ),
        approach="Always draw free body diagrams, identify conservation laws and use dimensional analysis.",
        strategies=(
            "**Energy Methods:** use energy conservation for complex systems",
            "**Approximation Methods:** small angle approximations and binomial expansions",
            "**Graphical Analysis:** interpret v-t and a-t graphs for complex motion",
        ),
    ),
    "chemistry": _SubjectTemplate(
        title="Advanced Chemistry",
        tips=(
            "**Organic Mechanisms:** arrow pushing, stereochemistry, named reactions",
            "**Inorganic Complexes:** crystal field theory, coordination isomerism",
            "**Physical Chemistry:** kinetics, electrochemistry, thermodynamics",
        ),
        approach="Master reaction mechanisms, not just products. Understand why reactions occur.",
        strategies=(
            "**Thermodynamic Analysis:** use ΔG, ΔH and ΔS to predict feasibility",
            "**Kinetic Studies:** analyze rate laws and activation energies",
            "**Structure-Property Relations:** connect molecular structure to behavior",
        ),
    ),
    "mathematics": _SubjectTemplate(
        title="Advanced Mathematics",
        tips=(
            "**Calculus:** substitution, integration by parts, differential equations",
            "**Algebra:** complex numbers, matrices, probability",
            "**Geometry:** 3D coordinate geometry, vectors, conic sections",
        ),
        approach="Focus on conceptual understanding, not formula memorization.",
        strategies=(
            "**Multiple Approaches:** solve the same problem algebraically and geometrically",
            "**Pattern Recognition:** identify the underlying structure of the problem",
            "**Verification:** substitute the answer back or check a special case",
        ),
    ),
    "biology": _SubjectTemplate(
        title="Advanced Biology",
        tips=(
            "**Molecular Biology:** replication, transcription, translation",
            "**Physiology:** hormonal regulation, neural control, immunity",
            "**Genetics & Evolution:** inheritance patterns, population genetics",
        ),
        approach="Master NCERT diagrams and understand processes at the molecular level.",
        strategies=(
            "**Process Integration:** connect molecular events to physiological outcomes",
            "**Comparative Analysis:** compare similar processes across organisms",
        ),
    ),
    "general": _SubjectTemplate(
        title="Elite Preparation Strategy",
        tips=(
            "**Conceptual Mastery:** build deep understanding, not surface knowledge",
            "**Problem Patterns:** identify and master recurring problem types",
            "**Time Management:** develop speed with accuracy through timed practice",
            "**Error Analysis:** keep an error log and review mistake patterns",
        ),
        approach="Work through previous years' papers under exam conditions.",
        strategies=(
            "**Multi-Subject Integration:** practice problems that span several chapters",
            "**Teaching Others:** explain concepts aloud to solidify understanding",
        ),
    ),
}


class LocalFallbackGenerator:
    """Builds subject-tailored study guidance without calling any provider."""

    model = FALLBACK_MODEL
    speed = FALLBACK_SPEED

    def generate(self, query: str, subject: str | None = None) -> str:
        subject = subject or detect_subject(query)
        template = _TEMPLATES.get(subject, _TEMPLATES["general"])

        lines = [
            f"## Elite AI Tutor - {template.title}",
            "",
            "_The AI tutors are unavailable right now, so here is offline guidance to keep you moving._",
            "",
        ]
        if query:
            lines += [f"**Your question:** {query}", ""]

        lines += ["### Key areas", *(f"- {tip}" for tip in template.tips), ""]
        lines += [f"**Approach:** {template.approach}", ""]
        lines += ["### Problem-solving techniques", *(f"- {s}" for s in template.strategies), ""]
        lines += [
            "### How to attack this problem",
            "1. Write down what is given and what is asked.",
            "2. Identify the concepts and formulas that connect them.",
            "3. Solve step by step, keeping units and signs consistent.",
            "4. Check that the answer is reasonable.",
            "",
            "Please try again in a minute for a full worked solution.",
        ]
        return "\n".join(lines)
