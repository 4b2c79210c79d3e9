"""Extract candidate entity names and frequent keywords from document text."""

import re
from dataclasses import dataclass
from typing import List


@dataclass
class ExtractedKeyword:
    term: str
    count: int


# Runs of capitalized words, e.g. "Knowledge Graph" or "React"
CAPITALIZED_PATTERN = re.compile(r'\b[A-Z][a-z]+(?:\s+[A-Z][a-z]+)*\b')
WORD_PATTERN = re.compile(r'\b[a-zA-Z_]\w*\b')

STOP_WORDS = {
    "the", "a", "an", "is", "are", "was", "were", "be", "been", "being",
    "have", "has", "had", "do", "does", "did", "will", "would", "could",
    "should", "may", "might", "can", "shall", "to", "of", "in", "for",
    "on", "with", "at", "by", "from", "as", "into", "through", "during",
    "before", "after", "above", "below", "between", "out", "off", "over",
    "under", "again", "further", "then", "once", "and", "but", "or", "nor",
    "not", "so", "yet", "both", "either", "neither", "each", "every", "all",
    "any", "few", "more", "most", "other", "some", "such", "no", "only",
    "own", "same", "than", "too", "very", "just", "because", "if", "when",
    "while", "how", "what", "which", "who", "whom", "this", "that", "these",
    "those", "it", "its", "i", "me", "my", "we", "our", "you", "your",
    "he", "him", "his", "she", "her", "they", "them", "their",
}


class TermExtractor:
    """Finds capitalized phrases (likely entity names) and frequent keywords."""

    def extract_capitalized_terms(self, text: str, min_length: int = 3) -> List[str]:
        """Capitalized word runs of at least min_length chars, first occurrence order."""
        terms: List[str] = []
        seen = set()
        for match in CAPITALIZED_PATTERN.finditer(text):
            term = " ".join(match.group(0).split())
            if len(term) >= min_length and term not in seen:
                seen.add(term)
                terms.append(term)
        return terms

    def extract_keywords(
        self, text: str, top_n: int = 10, min_length: int = 3
    ) -> List[ExtractedKeyword]:
        """Frequency-based keyword extraction, ignoring stop words."""
        words = WORD_PATTERN.findall(text.lower())
        words = [w for w in words if len(w) >= min_length and w not in STOP_WORDS]
        freq: dict = {}
        for w in words:
            freq[w] = freq.get(w, 0) + 1
        sorted_words = sorted(freq.items(), key=lambda x: x[1], reverse=True)
        return [ExtractedKeyword(term=w, count=c) for w, c in sorted_words[:top_n]]
