"""
String similarity algorithms for mention resolution
"""
from typing import List

import jellyfish
from rapidfuzz import fuzz


def jaro_similarity(s1: str, s2: str) -> float:
    """
    Jaro similarity

    Matching characters must lie within floor(max(len1, len2) / 2) - 1
    positions of each other; transpositions count half.

    Args:
        s1: First string
        s2: Second string

    Returns:
        Similarity score (0-1)
    """
    if s1 == s2:
        return 1.0

    len1 = len(s1)
    len2 = len(s2)

    if len1 == 0 or len2 == 0:
        return 0.0

    match_distance = max(0, max(len1, len2) // 2 - 1)
    s1_matches = [False] * len1
    s2_matches = [False] * len2
    matches = 0

    # Find matches
    for i in range(len1):
        start = max(0, i - match_distance)
        end = min(i + match_distance + 1, len2)

        for j in range(start, end):
            if not s2_matches[j] and s1[i] == s2[j]:
                s1_matches[i] = True
                s2_matches[j] = True
                matches += 1
                break

    if matches == 0:
        return 0.0

    # Count transpositions
    transpositions = 0
    k = 0
    for i in range(len1):
        if s1_matches[i]:
            while not s2_matches[k]:
                k += 1
            if s1[i] != s2[k]:
                transpositions += 1
            k += 1

    return (
        matches / len1 +
        matches / len2 +
        (matches - transpositions / 2) / matches
    ) / 3


def jaro_winkler_similarity(s1: str, s2: str, prefix_scale: float = 0.1) -> float:
    """
    Jaro-Winkler similarity

    The common-prefix boost (up to 4 characters) is applied unconditionally,
    so results differ from libraries that only boost above a Jaro threshold.

    Args:
        s1: First string
        s2: Second string
        prefix_scale: Boost per shared prefix character

    Returns:
        Similarity score (0-1)
    """
    if s1 == s2:
        return 1.0

    if not s1 or not s2:
        return 0.0

    jaro = jaro_similarity(s1, s2)

    prefix = 0
    for i in range(min(4, len(s1), len(s2))):
        if s1[i] == s2[i]:
            prefix += 1
        else:
            break

    return min(jaro + prefix * prefix_scale * (1 - jaro), 1.0)


def token_sort_ratio(str1: str, str2: str) -> int:
    """
    Token sort ratio - sorts tokens before comparison, so word order does
    not matter ("Maduro Moros Nicolas" == "Nicolas Maduro Moros")

    Args:
        str1: First string, already normalized
        str2: Second string, already normalized

    Returns:
        Similarity score (0-100)
    """
    if not str1 or not str2:
        return 0

    return int(round(fuzz.token_sort_ratio(str1, str2)))


def common_char_ratio(str1: str, str2: str) -> float:
    """
    Share of distinct characters the two strings have in common

    Args:
        str1: First string
        str2: Second string

    Returns:
        Overlap (0-1)
    """
    chars1 = set(str1.lower())
    chars2 = set(str2.lower())

    if not chars1 or not chars2:
        return 0.0

    return len(chars1 & chars2) / max(len(chars1), len(chars2))


class PhoneticMatcher:
    """
    Phonetic matching for names (useful for handling spelling variations)
    """

    @staticmethod
    def metaphone(name: str) -> str:
        """
        Compute Metaphone code for name

        Args:
            name: Name to encode

        Returns:
            Metaphone code
        """
        if not name:
            return ""
        return jellyfish.metaphone(name)

    @staticmethod
    def phonetic_keys(name: str) -> List[str]:
        """Metaphone code per token"""
        return [PhoneticMatcher.metaphone(token) for token in name.split()]

    @staticmethod
    def phonetic_match(name1: str, name2: str) -> bool:
        """
        Check if two names match phonetically token by token

        Args:
            name1: First name
            name2: Second name

        Returns:
            True if phonetic match
        """
        keys1 = PhoneticMatcher.phonetic_keys(name1)
        keys2 = PhoneticMatcher.phonetic_keys(name2)

        if not keys1 or not keys2:
            return False

        return keys1 == keys2
