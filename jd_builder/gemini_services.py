import json
import logging
import threading

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions

from .config import GEMINI_MODEL
from .exceptions import AIServiceError, NoKeyAvailableError
from .key_manager import redact_key
from .language_processor import remove_years_of_experience

# genai.configure() sets a process-wide key, so configure + generate must not interleave
_genai_lock = threading.Lock()

SANITIZED_SECTIONS = ("overview", "responsibilities", "qualifications")


def _clean_json(text):
    return text.strip().replace('```json', '').replace('```', '')


def call_gemini(prompt, key_manager, model_name=GEMINI_MODEL, breaker=None):
    """
    Sends a prompt to Gemini using the next key from the rotation.

    Args:
        prompt (str): The prompt text.
        key_manager (KeyManager): Source of API keys; told whether the call worked.
        model_name (str): Gemini model to use.
        breaker (CircuitBreaker): Optional guard that stops calls while Gemini keeps failing.

    Returns:
        str: The response text.

    Raises:
        CircuitOpenError: If the breaker is open.
        NoKeyAvailableError: If every key is cooling down.
        AIServiceError: If the Gemini API call fails.
    """
    if breaker is not None:
        breaker.before_call()

    api_key = key_manager.get_next_key()
    if api_key is None:
        logging.warning("Gemini call skipped: no API key available.")
        raise NoKeyAvailableError()

    try:
        with _genai_lock:
            genai.configure(api_key=api_key)
            model = genai.GenerativeModel(model_name)
            response = model.generate_content(prompt)
        text = response.text
    except google_exceptions.ResourceExhausted as e:
        # Quota is per key; rotation handles it, so the breaker is not told
        key_manager.report_error(api_key)
        logging.error(f"Gemini API quota exceeded for key {redact_key(api_key)}: {e}", exc_info=True)
        raise AIServiceError() from e
    except google_exceptions.GoogleAPIError as e:
        key_manager.report_error(api_key)
        if breaker is not None:
            breaker.record_failure()
        logging.error(f"Gemini API error for key {redact_key(api_key)}: {e}", exc_info=True)
        raise AIServiceError() from e
    except ValueError as e:
        # Blocked or empty candidates; the key itself worked
        key_manager.report_success(api_key)
        if breaker is not None:
            breaker.record_success()
        logging.error(f"Gemini returned no usable text: {e}", exc_info=True)
        raise AIServiceError("AI service could not produce a response for this text.") from e
    except Exception as e:
        key_manager.report_error(api_key)
        if breaker is not None:
            breaker.record_failure()
        logging.error(f"Unexpected error calling Gemini with key {redact_key(api_key)}: {e}", exc_info=True)
        raise AIServiceError() from e

    key_manager.report_success(api_key)
    if breaker is not None:
        breaker.record_success()
    return text


def sanitize_job_description(jd_data):
    """Removes years-of-experience requirements from the text sections of a generated JD."""
    if not jd_data or not isinstance(jd_data.get("sections"), dict):
        return jd_data

    sanitized = dict(jd_data)
    sections = dict(sanitized["sections"])
    for name in SANITIZED_SECTIONS:
        value = sections.get(name)
        if isinstance(value, list):
            sections[name] = [remove_years_of_experience(item)[0] if isinstance(item, str) else item
                              for item in value]
        elif isinstance(value, str):
            sections[name] = remove_years_of_experience(value)[0]
    sanitized["sections"] = sections
    return sanitized


def generate_job_description(intake, key_manager, breaker=None):
    """Uses Gemini to draft a structured job description from intake form data."""
    title = intake.get('title', 'N/A')
    logging.info(f"Generating job description for: {title}")
    prompt = (
        "**Objective:** Draft a clear, inclusive job description.\n\n"
        "**Intake Details:**\n"
        f"{json.dumps(intake, indent=2)}\n\n"
        "**Guidelines:**\n"
        "- Use active voice and specific, measurable outcomes.\n"
        "- Describe required capabilities rather than years of experience.\n"
        "- Avoid grandiose or exclusionary language.\n\n"
        "**Output Format:**\n"
        'Return a single JSON object with keys "title", "department" and "sections".\n'
        '- `sections` is an object with "overview" (string), "responsibilities" (list of strings) '
        'and "qualifications" (list of strings).'
    )
    text = call_gemini(prompt, key_manager, breaker=breaker)
    try:
        jd_data = json.loads(_clean_json(text))
    except json.JSONDecodeError as e:
        logging.error(f"Gemini returned invalid JSON for job description '{title}': {e}", exc_info=True)
        raise AIServiceError("AI service returned an unexpected response, please try again.") from e

    logging.info(f"Successfully generated job description for: {title}")
    return sanitize_job_description(jd_data)


def enhance_job_description(text, key_manager, instruction=None, breaker=None):
    """Uses Gemini to rewrite a job description, optionally following an instruction."""
    logging.info("Calling Gemini for job description enhancement...")
    instruction = instruction or "Make the language sharper, more inclusive and outcome-focused."
    prompt = f"""
    Please revise the following job description based on the user's instruction.
    Return only the revised text, without any extra formatting or explanation.

    Original Text:
    ---
    {text}
    ---

    Instruction: "{instruction}"
    """
    result = call_gemini(prompt, key_manager, breaker=breaker).strip()
    logging.info("Successfully received enhancement from Gemini.")
    return result


def analyze_job_description(text, key_manager, breaker=None):
    """Uses Gemini to review a job description for clarity and inclusivity."""
    logging.info("Calling Gemini to analyze job description...")
    prompt = f"""
    Review the following job description for clarity, inclusivity and specificity.

    Job Description:
    ---
    {text}
    ---

    Return the output as a JSON object with the following keys:
    - "clarity_score": An integer from 1 to 10.
    - "inclusivity_score": An integer from 1 to 10.
    - "issues": A list of short descriptions of problems found.
    - "suggestions": A list of concrete improvements.
    """
    try:
        analysis = json.loads(_clean_json(call_gemini(prompt, key_manager, breaker=breaker)))
    except json.JSONDecodeError as e:
        logging.error(f"Gemini returned invalid JSON for analysis: {e}", exc_info=True)
        raise AIServiceError("AI service returned an unexpected response, please try again.") from e
    logging.info("Successfully analyzed job description with Gemini.")
    return analysis
