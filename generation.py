"""
LLM generation: flashcards, study guides, quizzes and summaries.

GenerationClient wraps an OpenAI-compatible chat-completions endpoint (Groq by
default) with a bounded timeout, no internal retries and a circuit breaker.
Upstream failures surface as UpstreamError with an AI_* code. GenerationService
reads source material from the store but never writes to it.
"""

from __future__ import annotations

import json
import logging
import re
import sqlite3
import threading
import time
from typing import Any

import openai

from db_stores import FlashcardStoreDB, ResourceFileStoreDB, ResourceStoreDB
from errors import NotFoundError, UpstreamError, ValidationError

logger = logging.getLogger(__name__)

MIN_SOURCE_CHARS = 100
MIN_COUNT, MAX_COUNT = 5, 50
MAX_SOURCE_RESOURCES = 10
DIFFICULTIES = {
    "easy": "Focus on basic recall and recognition. Simple, straightforward questions.",
    "medium": "Mix of recall and application. Require understanding of concepts.",
    "hard": "Deep understanding, application, and synthesis. Challenging questions.",
}
SUMMARY_LENGTHS = {
    "brief": "Create a very concise summary (2-3 paragraphs). Only the most important points.",
    "moderate": "Create a balanced summary (4-6 paragraphs). Cover main concepts with some detail.",
    "detailed": "Create a comprehensive summary (8-12 paragraphs). Cover all major topics thoroughly.",
}
QUESTION_TYPES = ("multiple_choice", "true_false", "short_answer")

_FENCE_RE = re.compile(r"```(?:json)?\s*")


# ── Circuit Breaker ─────────────────────────────────────────

class CircuitBreaker:
    """closed -> open after repeated failures -> half_open after a cool-down -> closed."""

    FAILURE_THRESHOLD = 3
    RECOVERY_TIMEOUT = 60  # seconds

    def __init__(self) -> None:
        self.failures = 0
        self.state = "closed"
        self.last_failure_time = 0.0
        self._lock = threading.Lock()

    def record_success(self) -> None:
        with self._lock:
            self.failures = 0
            self.state = "closed"

    def record_failure(self) -> None:
        with self._lock:
            self.failures += 1
            self.last_failure_time = time.time()
            if self.failures >= self.FAILURE_THRESHOLD:
                self.state = "open"

    def is_open(self) -> bool:
        with self._lock:
            if self.state == "open":
                if time.time() - self.last_failure_time >= self.RECOVERY_TIMEOUT:
                    self.state = "half_open"
                    return False  # allow one attempt
                return True
            return False


# ── Client ──────────────────────────────────────────────────

class GenerationClient:
    def __init__(self, api_key: str, base_url: str, model: str, timeout: float = 60.0,
                 breaker: CircuitBreaker | None = None):
        self.api_key = api_key
        self.base_url = base_url
        self.model = model
        self.timeout = timeout
        self.breaker = breaker or CircuitBreaker()
        self._sdk: openai.OpenAI | None = None

    @classmethod
    def from_config(cls, config) -> GenerationClient:
        return cls(
            api_key=config.get("GROQ_API_KEY", ""),
            base_url=config.get("GROQ_BASE_URL", "https://api.groq.com/openai/v1"),
            model=config.get("GROQ_MODEL", "llama-3.3-70b-versatile"),
            timeout=config.get("GENERATION_TIMEOUT_SECONDS", 60.0),
        )

    def _client(self) -> openai.OpenAI:
        if self._sdk is None:
            self._sdk = openai.OpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                timeout=self.timeout,
                max_retries=0,
            )
        return self._sdk

    def complete(self, prompt: str, temperature: float = 0.7, max_tokens: int = 4096) -> str:
        """Single chat completion. Returns the response text or raises UpstreamError."""
        if not self.api_key:
            raise UpstreamError("AI generation is not configured", "AI_NOT_CONFIGURED", 503)
        if self.breaker.is_open():
            raise UpstreamError("AI service is temporarily unavailable", "AI_UNAVAILABLE", 503)

        start = time.time()
        try:
            completion = self._client().chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except openai.AuthenticationError as e:
            self.breaker.record_failure()
            logger.error("AI auth failed: %s", e)
            raise UpstreamError("AI service authentication failed. Check API key.", "AI_AUTH_FAILED", 500)
        except openai.RateLimitError as e:
            self.breaker.record_failure()
            logger.warning("AI rate limited: %s", e)
            raise UpstreamError("AI service rate limit exceeded. Please try again later.",
                                "AI_RATE_LIMITED", 429)
        except openai.APITimeoutError:
            self.breaker.record_failure()
            logger.warning("AI request timed out after %.0fs", self.timeout)
            raise UpstreamError("AI service timed out. Please try again.", "AI_TIMEOUT", 500)
        except openai.APIError as e:
            self.breaker.record_failure()
            logger.warning("AI request failed: %s", e)
            raise UpstreamError("AI generation failed. Please try again.")

        self.breaker.record_success()
        text = completion.choices[0].message.content if completion.choices else None
        logger.info("AI completion model=%s latency_ms=%d chars=%d", self.model,
                    int((time.time() - start) * 1000), len(text or ""))
        if not text or not text.strip():
            raise UpstreamError("AI returned an empty response")
        return text


# ── Response parsing ────────────────────────────────────────

def strip_fences(text: str) -> str:
    return _FENCE_RE.sub("", text).strip()


def _load_json(text: str) -> Any:
    try:
        return json.loads(strip_fences(text))
    except json.JSONDecodeError:
        logger.warning("AI returned unparseable JSON: %.200s", text)
        raise UpstreamError("AI returned an invalid format")


def parse_flashcards(text: str) -> list[dict]:
    data = _load_json(text)
    if not isinstance(data, list):
        raise UpstreamError("AI returned an invalid format")
    cards = [
        {"front": c["front"].strip(), "back": c["back"].strip()}
        for c in data
        if isinstance(c, dict)
        and isinstance(c.get("front"), str) and c["front"].strip()
        and isinstance(c.get("back"), str) and c["back"].strip()
    ]
    if not cards:
        raise UpstreamError("AI returned no usable flashcards")
    return cards


def parse_study_guide(text: str) -> dict:
    data = _load_json(text)
    if not isinstance(data, dict) or not isinstance(data.get("sections"), list) or not data["sections"]:
        raise UpstreamError("AI returned an invalid study guide")
    return data


def parse_quiz(text: str) -> dict:
    data = _load_json(text)
    if not isinstance(data, dict) or not isinstance(data.get("questions"), list) or not data["questions"]:
        raise UpstreamError("AI returned an invalid quiz")
    return data


# ── Service ─────────────────────────────────────────────────

def _check_count(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not MIN_COUNT <= value <= MAX_COUNT:
        raise ValidationError(f"{name} must be between {MIN_COUNT} and {MAX_COUNT}", "INVALID_COUNT")
    return value


def _context_lines(course_context: str | None, exam_tag: str | None) -> str:
    lines = []
    if course_context:
        lines.append(f"COURSE CONTEXT: {course_context}")
    if exam_tag:
        lines.append(f"EXAM FOCUS: {exam_tag}")
    return "\n".join(lines)


class GenerationService:
    def __init__(self, db: sqlite3.Connection, client: GenerationClient):
        self.db = db
        self.client = client
        self.resources = ResourceStoreDB(db)
        self.flashcards = FlashcardStoreDB(db)
        self.files = ResourceFileStoreDB(db)

    def generate_flashcards(self, source_text: Any, course_context: str | None = None,
                            exam_tag: str | None = None, count: Any = 10) -> dict:
        if not isinstance(source_text, str) or len(source_text.strip()) < MIN_SOURCE_CHARS:
            raise ValidationError(f"Source text must be at least {MIN_SOURCE_CHARS} characters",
                                  "TEXT_TOO_SHORT")
        count = _check_count(count, "Flashcard count")

        prompt = f"""You are an expert educator creating study flashcards for students.

SOURCE MATERIAL:
{source_text.strip()}

{_context_lines(course_context, exam_tag)}

INSTRUCTIONS:
1. Create exactly {count} high-quality flashcards from this material
2. Each flashcard should test ONE specific concept
3. Questions should be clear and concise (5-15 words)
4. Answers should be complete but brief (1-3 sentences)
5. Focus on key concepts, definitions, formulas, and important facts
6. Vary question types (definitions, applications, comparisons, examples)

OUTPUT FORMAT:
Return ONLY a valid JSON array of objects with "front" and "back" string fields.
No additional text, no markdown, no code blocks."""

        cards = parse_flashcards(self.client.complete(prompt, temperature=0.7, max_tokens=4096))
        return {"flashcards": cards, "generated": len(cards), "requested": count}

    def generate_flashcards_from_resource(self, resource_id: str, count: Any = 10) -> dict:
        resource, text = self._notes_text(resource_id)
        course = resource["course"]
        return self.generate_flashcards(
            text,
            course_context=f"{course['course_code']} - {course['title']}",
            exam_tag=resource.get("exam_tag"),
            count=count,
        )

    def generate_study_guide(self, resource_ids: Any, course_context: str | None = None,
                             exam_tag: str | None = None) -> dict:
        content = self._flashcard_material(resource_ids)
        prompt = f"""You are an expert educator creating a comprehensive study guide for students.

SOURCE FLASHCARDS:
{content}

{_context_lines(course_context, exam_tag)}

INSTRUCTIONS:
Synthesize the material into logical sections with clear headings, key concepts
and definitions, important formulas or facts, examples, common mistakes and study tips.

OUTPUT FORMAT:
Return ONLY a valid JSON object:
{{"title": "...", "sections": [{{"heading": "...", "key_points": [], "definitions": [{{"term": "...", "definition": "..."}}], "examples": [], "common_mistakes": [], "study_tips": []}}]}}
No additional text, no markdown."""

        return parse_study_guide(self.client.complete(prompt, temperature=0.7, max_tokens=8000))

    def generate_quiz(self, resource_ids: Any, question_count: Any = 10, difficulty: str = "medium",
                      question_types: list[str] | None = None) -> dict:
        question_count = _check_count(question_count, "Question count")
        if difficulty not in DIFFICULTIES:
            raise ValidationError("difficulty must be easy, medium or hard", "INVALID_DIFFICULTY")
        question_types = question_types or ["multiple_choice"]
        if not isinstance(question_types, list) or any(t not in QUESTION_TYPES for t in question_types):
            raise ValidationError(f"question_types must be drawn from {', '.join(QUESTION_TYPES)}")
        content = self._flashcard_material(resource_ids)

        prompt = f"""You are an expert educator creating a practice quiz for students.

SOURCE MATERIAL:
{content}

DIFFICULTY: {difficulty} - {DIFFICULTIES[difficulty]}
QUESTION TYPES: {', '.join(question_types)}
NUMBER OF QUESTIONS: {question_count}

INSTRUCTIONS:
Create exactly {question_count} quiz questions. Multiple choice questions have 4
options with one correct answer. Include an explanation for each answer.

OUTPUT FORMAT:
Return ONLY a valid JSON object:
{{"questions": [{{"type": "multiple_choice", "question": "...", "options": ["A) ...", "B) ...", "C) ...", "D) ..."], "correct_answer": "A", "explanation": "..."}}]}}
No additional text."""

        quiz = parse_quiz(self.client.complete(prompt, temperature=0.8, max_tokens=8000))
        return {"quiz": quiz, "total_questions": len(quiz["questions"]), "difficulty": difficulty}

    def summarize_notes(self, resource_id: str, length: str = "moderate") -> dict:
        if length not in SUMMARY_LENGTHS:
            raise ValidationError("length must be brief, moderate or detailed", "INVALID_LENGTH")
        resource, text = self._notes_text(resource_id)
        course = resource["course"]

        prompt = f"""You are an expert at summarizing academic content for students.

SOURCE MATERIAL:
{text}

COURSE: {course['course_code']} - {course['title']}
{f"EXAM FOCUS: {resource['exam_tag']}" if resource.get('exam_tag') else ''}

INSTRUCTIONS:
{SUMMARY_LENGTHS[length]}
Cover main concepts, important definitions, key facts and how the ideas relate.
Return plain text (not JSON), organised in paragraphs with headings where useful."""

        summary = self.client.complete(prompt, temperature=0.6, max_tokens=4096).strip()
        return {
            "summary": summary,
            "original_length": len(text),
            "summary_length": len(summary),
            "compression_ratio": round(100 * len(summary) / len(text)),
        }

    # ── Source material ─────────────────────────────────────

    def _notes_text(self, resource_id: str) -> tuple[dict, str]:
        resource = self.resources.get(resource_id)
        if resource is None:
            raise NotFoundError("Resource not found")
        if resource["type"] != "NOTES":
            raise ValidationError("Only notes can be used as source material", "INVALID_TYPE")
        if resource["file_count"] == 0:
            raise ValidationError("No files uploaded to this resource", "NO_FILES")
        text = self.files.extracted_text(resource_id)
        if len(text) < MIN_SOURCE_CHARS:
            raise ValidationError("Not enough text extracted from the uploaded files", "INSUFFICIENT_TEXT")
        return resource, text

    def _flashcard_material(self, resource_ids: Any) -> str:
        if not isinstance(resource_ids, list) or not resource_ids:
            raise ValidationError("At least one resource is required", "NO_RESOURCES")
        if len(resource_ids) > MAX_SOURCE_RESOURCES:
            raise ValidationError(f"At most {MAX_SOURCE_RESOURCES} resources allowed", "TOO_MANY_RESOURCES")
        sets = [r for r in self.resources.list_by_ids(str(i) for i in resource_ids) if r["type"] == "FLASHCARDS"]
        if not sets:
            raise NotFoundError("No valid flashcard sets found")

        blocks = []
        for resource in sets:
            cards = "\n\n".join(
                f"Q: {c['front']}\nA: {c['back']}" for c in self.flashcards.for_resource(resource["id"])
            )
            blocks.append(f"=== {resource['title']} ===\n{cards}")
        return "\n\n---\n\n".join(blocks)
