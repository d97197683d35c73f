"""
Text cleaning, stop-word filtering and stemming shared by the parser and the indexer.
"""

import re
from typing import Dict, Iterable, List, Set

from nltk.stem.snowball import SnowballStemmer


_SPECIAL_CHARS = re.compile(r'[^0-9A-Za-z ]')
_NUMERIC_WORDS = re.compile(r'\b\d+\b')
_WHITESPACE = re.compile(r'\s+')


def process_string(text: str) -> str:
    """
    Clean a text fragment for tokenization.

    Lower-cases, replaces every character outside [a-z0-9 ] with a space,
    removes purely numeric words and collapses whitespace.
    """
    text = text.lower()
    text = _SPECIAL_CHARS.sub(' ', text)
    text = _NUMERIC_WORDS.sub(' ', text)
    text = _WHITESPACE.sub(' ', text)
    return text.strip()


def tokenize(text: str) -> List[str]:
    """Split a cleaned copy of the text into tokens."""
    cleaned = process_string(text)
    return cleaned.split(' ') if cleaned else []


class TextProcessor:
    """Stop-word test and English Snowball stemming."""

    def __init__(self, stop_words: Iterable[str] = ()):
        self.stop_words: Set[str] = {w.lower() for w in stop_words}
        self._stemmer = SnowballStemmer('english')

    def is_stop_word(self, word: str) -> bool:
        return len(word) <= 2 or word in self.stop_words

    def stem(self, word: str) -> str:
        return self._stemmer.stem(word)

    def remove_stop_words(self, words: Iterable[str]) -> List[str]:
        return [w for w in words if not self.is_stop_word(w)]

    def stem_words(self, words: Iterable[str]) -> List[str]:
        return [self.stem(w) for w in words]

    def words_dictionary(self, words: Iterable[str]) -> Dict[str, List[str]]:
        """
        Map every stem to the words sharing it, keyed in sorted stem order.

        Used on the query side to expand a stem back to the surface words
        present in the index.
        """
        dictionary: Dict[str, List[str]] = {}
        for word in sorted(set(words)):
            dictionary.setdefault(self.stem(word), []).append(word)
        return dict(sorted(dictionary.items()))

