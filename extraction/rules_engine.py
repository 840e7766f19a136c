"""
Rules Extraction Engine - Stateless keyword/regex extractor.

A small reference engine so the harness runs end to end. All tuning
comes from the EngineConfig passed on each call; the instance holds only
immutable class-level tables.

Flags understood:
- USE_AMOUNT_V2: parse compound spoken numbers ("three thousand five hundred")
- USE_NAME_V2: extra self-introduction patterns
- USE_STRICT_NAME_REJECT: reject captures containing non-name words
- USE_EMERGENCY_CATEGORY: enable the EMERGENCY category
- URGENCY_HIGH_THRESHOLD_OVERRIDE: float threshold for HIGH urgency
"""

import re
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .schemas import EngineConfig, ExtractedFields


class RulesExtractionEngine:
    """
    Deterministic rules-based engine.

    Satisfies the ExtractionEngine protocol without keeping any state
    between calls.
    """

    # Lead-ins are case-insensitive, the captured name must be capitalised
    NAME_PATTERNS = [
        re.compile(r"(?i:my\s+name\s+is)\s+([A-Za-z][a-z'\-]*(?:\s+[A-Z][a-z'\-]+)?)"),
        re.compile(r"(?i:this\s+is)\s+([A-Z][a-z'\-]+(?:\s+[A-Z][a-z'\-]+)?)"),
    ]

    NAME_V2_PATTERNS = [
        re.compile(r"(?i:\bi'?m)\s+([A-Z][a-z'\-]+(?:\s+[A-Z][a-z'\-]+)?)"),
        re.compile(r"(?i:\bcall\s+me)\s+([A-Z][a-z'\-]+)"),
    ]

    NON_NAME_WORDS = {"facing", "calling", "looking", "needing", "trying", "getting"}

    CATEGORY_KEYWORDS: List[Tuple[str, List[str]]] = [
        ("HOUSING", ["rent", "evict", "eviction", "landlord", "housing", "apartment", "homeless"]),
        ("HEALTHCARE", ["medical", "hospital", "surgery", "doctor", "medication", "treatment"]),
        ("FOOD", ["food", "groceries", "hungry", "meals"]),
        ("EMPLOYMENT", ["job", "laid off", "unemployed", "work", "employment"]),
        ("TRANSPORTATION", ["car", "vehicle", "bus", "transportation", "repair"]),
        ("CHILDCARE", ["childcare", "daycare", "babysitter"]),
        ("EDUCATION", ["tuition", "school", "college", "books"]),
        ("LEGAL", ["lawyer", "court", "legal"]),
        ("SAFETY", ["abuse", "unsafe", "violence", "danger"]),
        ("MENTAL_HEALTH", ["therapy", "counseling", "depression", "anxiety"]),
    ]

    EMERGENCY_KEYWORDS = ["fire", "flood", "disaster", "emergency"]

    URGENCY_WEIGHTS: Dict[str, float] = {
        "immediately": 0.3,
        "urgent": 0.3,
        "emergency": 0.4,
        "tonight": 0.3,
        "today": 0.2,
        "tomorrow": 0.2,
        "evict": 0.25,
        "shut off": 0.25,
        "this week": 0.15,
        "soon": 0.1,
        "danger": 0.4,
        "overdue": 0.1,
    }

    CRITICAL_THRESHOLD = 0.8
    HIGH_THRESHOLD = 0.38
    MEDIUM_THRESHOLD = 0.13

    UNITS = {
        "zero": 0, "one": 1, "two": 2, "three": 3, "four": 4, "five": 5,
        "six": 6, "seven": 7, "eight": 8, "nine": 9, "ten": 10,
        "eleven": 11, "twelve": 12, "thirteen": 13, "fourteen": 14,
        "fifteen": 15, "sixteen": 16, "seventeen": 17, "eighteen": 18,
        "nineteen": 19, "twenty": 20, "thirty": 30, "forty": 40,
        "fifty": 50, "sixty": 60, "seventy": 70, "eighty": 80, "ninety": 90,
    }
    SCALES = {"hundred": 100, "thousand": 1000}

    def extract(
        self,
        transcript_text: str,
        case_metadata: Mapping[str, Any],
        config: EngineConfig,
    ) -> ExtractedFields:
        """Extract all four fields from one transcript."""
        text = transcript_text or ""
        score = self._urgency_score(text)
        return ExtractedFields(
            name=self._extract_name(text, config),
            category=self._extract_category(text, config),
            urgency_level=self._urgency_level(score, config),
            goal_amount=self._extract_amount(text, config),
            urgency_score=round(score, 4),
        )

    # ===== Name =====

    def _extract_name(self, text: str, config: EngineConfig) -> Optional[str]:
        patterns = list(self.NAME_PATTERNS)
        if config.flag_enabled("USE_NAME_V2"):
            patterns.extend(self.NAME_V2_PATTERNS)

        for pattern in patterns:
            match = pattern.search(text)
            if not match:
                continue
            candidate = match.group(1).strip()
            tokens = candidate.split()
            if config.flag_enabled("USE_STRICT_NAME_REJECT"):
                tokens = [t for t in tokens if t.lower() not in self.NON_NAME_WORDS]
                if not tokens:
                    continue
            return " ".join(t[0].upper() + t[1:] for t in tokens)
        return None

    # ===== Category =====

    def _extract_category(self, text: str, config: EngineConfig) -> Optional[str]:
        lowered = text.lower()
        if config.flag_enabled("USE_EMERGENCY_CATEGORY"):
            if any(k in lowered for k in self.EMERGENCY_KEYWORDS):
                return "EMERGENCY"

        best: Optional[str] = None
        best_hits = 0
        for category, keywords in self.CATEGORY_KEYWORDS:
            hits = sum(1 for k in keywords if k in lowered)
            if hits > best_hits:
                best, best_hits = category, hits
        return best

    # ===== Urgency =====

    def _urgency_score(self, text: str) -> float:
        lowered = text.lower()
        total = sum(w for k, w in self.URGENCY_WEIGHTS.items() if k in lowered)
        return min(total, 1.0)

    def _urgency_level(self, score: float, config: EngineConfig) -> str:
        high = config.float_flag("URGENCY_HIGH_THRESHOLD_OVERRIDE", self.HIGH_THRESHOLD)
        if score >= self.CRITICAL_THRESHOLD:
            return "CRITICAL"
        if score >= high:
            return "HIGH"
        if score >= self.MEDIUM_THRESHOLD:
            return "MEDIUM"
        return "LOW"

    # ===== Amount =====

    def _extract_amount(self, text: str, config: EngineConfig) -> Optional[float]:
        match = re.search(r"\$\s?(\d[\d,]*(?:\.\d+)?)", text)
        if match:
            return float(match.group(1).replace(",", ""))

        match = re.search(r"(\d[\d,]*(?:\.\d+)?)\s+dollars", text, re.IGNORECASE)
        if match:
            return float(match.group(1).replace(",", ""))

        return self._spoken_amount(text, compound=config.flag_enabled("USE_AMOUNT_V2"))

    def _spoken_amount(self, text: str, compound: bool) -> Optional[float]:
        """
        Parse a spoken amount ending in "dollars".

        Without compound parsing only the last number group before the
        scale word counts, so "three thousand five hundred" reads as 500.
        """
        words = re.findall(r"[a-z]+", text.lower())
        if "dollars" not in words:
            return None
        end = words.index("dollars")

        start = end
        while start > 0 and (words[start - 1] in self.UNITS or words[start - 1] in self.SCALES
                             or words[start - 1] == "and"):
            start -= 1
        number_words = [w for w in words[start:end] if w != "and"]
        if not number_words:
            return None

        if not compound:
            # keep only the trailing group after the last "thousand"
            if "thousand" in number_words[:-1]:
                cut = len(number_words) - 1 - number_words[::-1].index("thousand")
                number_words = number_words[cut + 1:] or number_words
        return float(self._words_to_number(number_words))

    def _words_to_number(self, words: List[str]) -> int:
        total = 0
        current = 0
        for word in words:
            if word in self.UNITS:
                current += self.UNITS[word]
            elif word == "hundred":
                current = max(current, 1) * 100
            elif word == "thousand":
                total += max(current, 1) * 1000
                current = 0
        return total + current
