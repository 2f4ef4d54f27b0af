from __future__ import annotations

import re
from io import BytesIO

from docx import Document

from wikilesson.schemas import Lesson

STRATEGY_NOTE = (
    "Learning Strategy: This lesson uses interleaving (mixing concepts) and elaboration "
    "(deep processing) to enhance retention and understanding."
)
SPACED_REPETITION_NOTE = (
    "Spaced Repetition: Review this material in 1 day, 3 days, then 7 days for optimal "
    "long-term retention."
)


def download_filename(title: str | None, ext: str) -> str:
    stem = re.sub(r"\s", "_", title or "") or "lesson"
    return f"{stem}.{ext}"


def lesson_to_text(lesson: Lesson, page_url: str | None = None) -> str:
    out: list[str] = [lesson.title]
    if page_url:
        out.append(f"Source: {page_url}")
    out += ["", STRATEGY_NOTE, "", "Introduction", lesson.introduction, "", "Core Concepts"]
    out += [f"- {c.concept}: {c.explanation}" for c in lesson.coreConcepts]

    if lesson.keyFormulas:
        out += ["", "Key Formulas"]
        for f in lesson.keyFormulas:
            out += [f"{f.description}:", f"    {f.formula}"]

    out += [
        "",
        "Worked Example",
        f"Problem: {lesson.workedExample.problem}",
        f"Solution: {lesson.workedExample.solution}",
        "",
        "Active Recall Practice",
    ]
    out += [f"{i}. {p}" for i, p in enumerate(lesson.activeRecallPrompts, start=1)]
    out += ["", SPACED_REPETITION_NOTE]
    return "\n".join(out) + "\n"


def lesson_to_docx(lesson: Lesson, page_url: str | None = None) -> bytes:
    doc = Document()
    doc.add_heading(lesson.title, level=1)
    if page_url:
        doc.add_paragraph(f"Source: {page_url}")
    doc.add_paragraph(STRATEGY_NOTE)

    doc.add_heading("Introduction", level=2)
    doc.add_paragraph(lesson.introduction)

    doc.add_heading("Core Concepts", level=2)
    for c in lesson.coreConcepts:
        p = doc.add_paragraph(style="List Bullet")
        p.add_run(f"{c.concept}: ").bold = True
        p.add_run(c.explanation)

    if lesson.keyFormulas:
        doc.add_heading("Key Formulas", level=2)
        for f in lesson.keyFormulas:
            doc.add_paragraph().add_run(f"{f.description}:").bold = True
            doc.add_paragraph(f.formula)

    doc.add_heading("Worked Example", level=2)
    p = doc.add_paragraph()
    p.add_run("Problem: ").bold = True
    p.add_run(lesson.workedExample.problem)
    p = doc.add_paragraph()
    p.add_run("Solution: ").bold = True
    p.add_run(lesson.workedExample.solution)

    doc.add_heading("Active Recall Practice", level=2)
    for prompt in lesson.activeRecallPrompts:
        doc.add_paragraph(prompt, style="List Number")

    doc.add_paragraph(SPACED_REPETITION_NOTE)

    bio = BytesIO()
    doc.save(bio)
    return bio.getvalue()
