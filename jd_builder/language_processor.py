"""
Rule-based language clean-up for job descriptions.

Replaces grandiose and vague wording, turns passive phrasing active, drops
intensifiers and redundant pairs, and scores how sharp the result reads.
"""
import re

GRANDIOSE_WORDS = {
    "world-class": "high-performing",
    "cornerstone": "key component",
    "cutting-edge": "advanced",
    "best-in-class": "leading",
    "game-changing": "innovative",
    "revolutionary": "innovative",
    "groundbreaking": "innovative",
    "state-of-the-art": "modern",
    "next-generation": "advanced",
    "bleeding-edge": "advanced",
    "paradigm-shifting": "transformative",
    "disruptive": "transformative",
    "unparalleled": "exceptional",
    "unrivaled": "exceptional",
    "unmatched": "exceptional",
    "best-of-breed": "top-tier",
    "visionary": "forward-thinking",
    "synergistic": "collaborative",
    "holistic": "comprehensive",
    "robust": "strong",
    "seamless": "smooth",
    "frictionless": "smooth",
    "leverage": "use",
    "utilize": "use",
    "empower": "enable",
    "champion": "advocate for",
    "spearhead": "lead",
    "evangelize": "promote",
}

PASSIVE_PATTERNS = {
    "responsible for": "own and lead",
    "in charge of": "lead",
    "tasked with": "drive",
    "assigned to": "own",
    "will be required to": "will",
    "is expected to": "will",
    "duties include": "will",
    "will need to": "will",
}

VAGUE_IMPACT_PATTERNS = {
    "make an impact": "deliver measurable results",
    "drive success": "achieve specific outcomes",
    "contribute to growth": "increase [specific metric]",
    "help the team": "collaborate with the team to achieve",
    "support the business": "enable business goals by",
    "improve processes": "optimize processes to reduce [time/cost]",
    "enhance performance": "improve performance by [specific metric]",
}

INTENSIFIERS = [
    "very", "really", "extremely", "deeply", "highly", "greatly", "incredibly",
    "remarkably", "substantially", "significantly", "extensively",
]

REDUNDANT_PATTERNS = [
    ("scalable and built for scale", "scalable"),
    ("innovative and creative", "innovative"),
    ("collaborate and work together", "collaborate"),
    ("plan and strategize", "strategize"),
    ("monitor and track", "monitor"),
    ("analyze and evaluate", "analyze"),
    ("develop and create", "develop"),
    ("implement and execute", "implement"),
    ("manage and oversee", "manage"),
    ("communicate and convey", "communicate"),
    ("design and architect", "design"),
    ("lead and guide", "lead"),
    ("optimize and improve", "optimize"),
    ("review and assess", "review"),
]

YEARS_OF_EXPERIENCE_PATTERNS = [
    re.compile(r"\d+\+?\s*years?\s+(?:of\s+)?experience", re.IGNORECASE),
    re.compile(r"at least \d+\s*years", re.IGNORECASE),
    re.compile(r"minimum of \d+\s*years", re.IGNORECASE),
    re.compile(r"\d+\+?\s*years?\s+in\s+", re.IGNORECASE),
    re.compile(r"experience of \d+\+?\s*years", re.IGNORECASE),
    re.compile(r"\d+\+?\s*years?\s+(?:of\s+)?background", re.IGNORECASE),
]

CAPABILITY_PHRASES = [
    "proven experience",
    "demonstrated ability",
    "track record",
    "experience successfully",
    "history of delivering",
    "proven capability",
]


def _phrase_regex(phrase, trailing_space=False):
    pattern = r"\b" + re.escape(phrase) + r"\b"
    if trailing_space:
        pattern += r"\s"
    return re.compile(pattern, re.IGNORECASE)


def _change(change_type, original, replacement, reason):
    return {"type": change_type, "original": original, "replacement": replacement, "reason": reason}


def _replace_phrases(text, mapping, change_type, reason_template):
    changes = []
    for original, replacement in mapping:
        regex = _phrase_regex(original)
        if regex.search(text):
            changes.append(_change(change_type, original, replacement,
                                   reason_template.format(original=original, replacement=replacement)))
            text = regex.sub(replacement, text)
    return text, changes


def replace_grandiose_words(text):
    return _replace_phrases(text, GRANDIOSE_WORDS.items(), "grandiose",
                            'Replaced grandiose term "{original}" with sharper alternative "{replacement}"')


def replace_vague_impact(text):
    return _replace_phrases(text, VAGUE_IMPACT_PATTERNS.items(), "vague",
                            'Replaced vague impact "{original}" with more specific "{replacement}"')


def convert_passive_to_active(text):
    return _replace_phrases(text, PASSIVE_PATTERNS.items(), "passive",
                            'Converted passive phrase "{original}" to active "{replacement}"')


def remove_redundancy(text):
    return _replace_phrases(text, REDUNDANT_PATTERNS, "redundancy",
                            'Simplified redundant phrase "{original}" to "{replacement}"')


def remove_intensifiers(text):
    changes = []
    for intensifier in INTENSIFIERS:
        regex = _phrase_regex(intensifier, trailing_space=True)
        if regex.search(text):
            changes.append(_change("intensifier", intensifier, "",
                                   f'Removed unnecessary intensifier "{intensifier}"'))
            text = regex.sub("", text)
    return text, changes


def remove_years_of_experience(text):
    """Rewrites years-of-experience requirements as capability-based language."""
    changes = []
    if not text:
        return text, changes

    replacement_index = 0
    for pattern in YEARS_OF_EXPERIENCE_PATTERNS:
        match = pattern.search(text)
        if match:
            replacement = CAPABILITY_PHRASES[replacement_index % len(CAPABILITY_PHRASES)]
            replacement_index += 1
            changes.append(_change("experience", match.group(0), replacement,
                                   f'Replaced years-of-experience requirement "{match.group(0).strip()}"'))
            text = pattern.sub(replacement, text)
    return text, changes


def calculate_sharpness_score(original, processed, changes):
    """Scores the text from 1 to 5 in half steps; 5 means nothing needed changing."""
    if not changes:
        return 5

    score = 3.0
    original_words = max(1, len(original.split()))
    processed_words = len(processed.split())
    conciseness = processed_words / original_words

    if conciseness < 0.85:
        score += 1
    elif conciseness > 0.95:
        score -= 0.5

    change_ratio = len(changes) / (original_words / 20)
    if change_ratio > 1:
        score -= 1
    elif change_ratio < 0.5:
        score += 0.5

    if any(c["type"] == "grandiose" for c in changes):
        score += 0.5
    if any(c["type"] == "passive" for c in changes):
        score += 0.5

    return max(1, min(5, round(score * 2) / 2))


def get_improvement_suggestions(score, changes):
    suggestions = []
    if score >= 5:
        return suggestions

    change_types = {c["type"] for c in changes}
    if "grandiose" in change_types:
        suggestions.append("Replace grandiose language with more precise terms")
    if "passive" in change_types:
        suggestions.append("Convert passive voice to active voice for stronger impact")
    if "vague" in change_types:
        suggestions.append("Replace vague impact statements with specific outcomes")
    if "redundancy" in change_types:
        suggestions.append("Remove redundant phrases to improve conciseness")
    if "intensifier" in change_types:
        suggestions.append("Remove unnecessary intensifiers for clearer communication")
    if "experience" in change_types:
        suggestions.append("Describe required capabilities instead of years of experience")

    if score <= 2:
        suggestions.append("Consider rewriting for clarity and precision")
    elif score <= 3:
        suggestions.append("Focus on making outcomes more measurable")
    elif score <= 4:
        suggestions.append("Fine-tune language for maximum impact")
    return suggestions


def generate_diff_html(original, changes):
    """Marks each change inline with `diff-old` / `diff-new` spans."""
    html = original
    for change in changes:
        if not change["original"]:
            continue
        regex = _phrase_regex(change["original"])
        html = regex.sub(
            f'<span class="diff-old">{change["original"]}</span>'
            f'<span class="diff-new">{change["replacement"]}</span>',
            html,
        )
    return html


class LanguageProcessor:
    """
    Applies the rewriting rules in a fixed order.

    Each rule group can be switched off. All are on by default except the
    years-of-experience rewrite.
    """

    def __init__(self, enhance_language=True, convert_passive_to_active=True,
                 remove_intensifiers=True, remove_redundancy=True, remove_years_of_experience=False):
        self.enhance_language = enhance_language
        self.convert_passive_to_active = convert_passive_to_active
        self.remove_intensifiers = remove_intensifiers
        self.remove_redundancy = remove_redundancy
        self.remove_years_of_experience = remove_years_of_experience

    @classmethod
    def from_options(cls, options):
        """Builds a processor from the camelCase `enhanceText` options."""
        options = options or {}
        return cls(
            enhance_language=options.get("enhanceLanguage", True) is not False,
            convert_passive_to_active=options.get("convertPassiveToActive", True) is not False,
            remove_intensifiers=options.get("removeIntensifiers", True) is not False,
            remove_redundancy=options.get("removeRedundancy", True) is not False,
            remove_years_of_experience=bool(options.get("removeYearsOfExperience", False)),
        )

    def stages(self):
        """
        The rule groups as (stage label, function) pairs, in application order.

        The text processor worker runs these one at a time so it can report
        progress and check for cancellation between them.
        """
        language_rules, active_rules, cleanup_rules = [], [], []
        if self.enhance_language:
            language_rules.extend([replace_grandiose_words, replace_vague_impact])
        if self.convert_passive_to_active:
            active_rules.append(convert_passive_to_active)
        if self.remove_intensifiers:
            cleanup_rules.append(remove_intensifiers)
        if self.remove_redundancy:
            cleanup_rules.append(remove_redundancy)
        if self.remove_years_of_experience:
            cleanup_rules.append(remove_years_of_experience)
        return [
            ("Applying language enhancements", language_rules),
            ("Refining language", active_rules),
            ("Finalizing enhancements", cleanup_rules),
        ]

    def process_text(self, text):
        changes = []
        processed = text
        for _, rules in self.stages():
            for rule in rules:
                processed, rule_changes = rule(processed)
                changes.extend(rule_changes)

        return {
            "original": text,
            "processed": processed,
            "changes": changes,
            "sharpness_score": calculate_sharpness_score(text, processed, changes),
        }
