"""
AI scoring clients for submission validation.
Provides an OpenAI chat-completions scorer and an Amazon SageMaker endpoint scorer
behind the same contract:

    score(title, description, comment, time_taken, has_attachment) -> ScoreResult
    review(title, description, submission_text) -> ReviewResult

Every transport, timeout or decoding problem is raised as AIServiceUnavailable,
so callers can apply one fail-safe policy.
"""
import json
from collections import namedtuple
from decimal import Decimal, InvalidOperation
from typing import Any, Dict

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError
from openai import OpenAI, OpenAIError

from .config import config
from .errors import AIServiceUnavailable
from .logging import logger

MIN_SCORE = Decimal('0')
MAX_SCORE = Decimal('5')

ScoreResult = namedtuple('ScoreResult', ['score', 'passed', 'summary'])
ReviewResult = namedtuple('ReviewResult', ['score', 'comment'])

VALIDATION_SYSTEM_PROMPT = (
    'You are an AI task validator that evaluates if a worker has likely completed a task '
    'satisfactorily. Rate the submission on a scale of 0-5 where 5 is excellent. Return a JSON '
    'object with three fields: "score" (number 0-5), "passed" (boolean), and "summary" '
    '(string with brief feedback).'
)

REVIEW_SYSTEM_PROMPT = (
    'You are an AI tasked with evaluating work submissions. Evaluate the task based on '
    'relevance, effort, and completion. Return a JSON object with "score" (integer 1-5) '
    'and "comment" (string with constructive feedback).'
)


def build_validation_prompt(
    title: str,
    description: str,
    comment: str,
    time_taken: int,
    has_attachment: bool = False
) -> str:
    """Render the submission-time validation request."""
    return (
        f"Task title: {title}\n"
        f"Task description: {description}\n"
        f"Worker's comment: {comment or 'No comment provided'}\n"
        f"File attached: {'Yes' if has_attachment else 'No'}\n"
        f"Time taken: {time_taken} minutes\n"
    )


def build_review_prompt(title: str, description: str, submission_text: str) -> str:
    """Render the secondary re-score request."""
    return (
        "Please evaluate this task submission:\n\n"
        f"Task Title: {title}\n"
        f"Task Description: {description}\n"
        f"Submission: {submission_text or 'No submission text provided'}"
    )


def _load_json_object(content: Any) -> Dict[str, Any]:
    if isinstance(content, (bytes, bytearray)):
        try:
            content = content.decode('utf-8')
        except UnicodeDecodeError:
            raise AIServiceUnavailable('AI returned undecodable output')

    if isinstance(content, str):
        try:
            content = json.loads(content, parse_float=Decimal)
        except json.JSONDecodeError:
            raise AIServiceUnavailable('AI returned non-JSON output')

    if not isinstance(content, dict):
        raise AIServiceUnavailable('AI output is not a JSON object')
    return content


def _coerce_score(value: Any) -> Decimal:
    """Score must be a finite number in [0, 5]; bools are not numbers here."""
    if value is None or isinstance(value, bool):
        raise AIServiceUnavailable('AI output is missing a numeric score')
    try:
        score = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise AIServiceUnavailable(f'AI returned a non-numeric score: {value!r}')
    if not score.is_finite() or score < MIN_SCORE or score > MAX_SCORE:
        raise AIServiceUnavailable(f'AI returned an out-of-range score: {value!r}')
    return score


def parse_score_payload(content: Any) -> ScoreResult:
    """
    Validate the scorer's ``{score, passed, summary}`` answer.

    Raises:
        AIServiceUnavailable: output is not JSON or does not match the contract
    """
    data = _load_json_object(content)
    score = _coerce_score(data.get('score'))

    passed = data.get('passed')
    if not isinstance(passed, bool):
        raise AIServiceUnavailable('AI output is missing a boolean "passed"')

    summary = data.get('summary')
    if summary is None:
        summary = ''
    if not isinstance(summary, str):
        raise AIServiceUnavailable('AI output "summary" is not a string')

    return ScoreResult(score, passed, summary.strip())


def parse_review_payload(content: Any) -> ReviewResult:
    """Validate the secondary re-score ``{score, comment}`` answer."""
    data = _load_json_object(content)
    comment = data.get('comment') or ''
    if not isinstance(comment, str):
        raise AIServiceUnavailable('AI output "comment" is not a string')
    return ReviewResult(_coerce_score(data.get('score')), comment.strip())


# =============================================================================
# OpenAI
# =============================================================================

class OpenAIScorer:
    """Chat-completions scorer with JSON output."""

    def __init__(self, client=None, model: str = None, timeout: float = None):
        self._client = client
        self.model = model or config.OPENAI_MODEL
        self.timeout = timeout or config.AI_SCORING_TIMEOUT_SECONDS

    @property
    def client(self):
        if self._client is None:
            self._client = OpenAI(
                api_key=config.OPENAI_API_KEY or None,
                base_url=config.OPENAI_BASE_URL,
                timeout=self.timeout,
                max_retries=0,
            )
        return self._client

    def _complete(self, system_prompt: str, user_prompt: str) -> str:
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {'role': 'system', 'content': system_prompt},
                    {'role': 'user', 'content': user_prompt},
                ],
                response_format={'type': 'json_object'},
                timeout=self.timeout,
            )
            return response.choices[0].message.content
        except OpenAIError as e:
            logger.error(f"OpenAI API error: {e}")
            raise AIServiceUnavailable(f'AI validation request failed: {e.__class__.__name__}')
        except (IndexError, AttributeError) as e:
            logger.error(f"Unexpected OpenAI response shape: {e}")
            raise AIServiceUnavailable('AI returned an empty response')

    def score(
        self,
        title: str,
        description: str,
        comment: str,
        time_taken: int,
        has_attachment: bool = False
    ) -> ScoreResult:
        content = self._complete(
            VALIDATION_SYSTEM_PROMPT,
            build_validation_prompt(title, description, comment, time_taken, has_attachment)
        )
        result = parse_score_payload(content)
        logger.info(f"OpenAI scored submission: score={result.score} passed={result.passed}")
        return result

    def review(self, title: str, description: str, submission_text: str) -> ReviewResult:
        content = self._complete(
            REVIEW_SYSTEM_PROMPT,
            build_review_prompt(title, description, submission_text)
        )
        return parse_review_payload(content)


# =============================================================================
# Amazon SageMaker
# =============================================================================

class SageMakerScorer:
    """Scorer backed by a SageMaker endpoint returning the same JSON contract."""

    def __init__(self, client=None, endpoint_name: str = None, timeout: float = None):
        self._client = client
        self.endpoint_name = endpoint_name or config.SAGEMAKER_ENDPOINT_NAME
        self.timeout = timeout or config.AI_SCORING_TIMEOUT_SECONDS

    @property
    def client(self):
        if self._client is None:
            self._client = boto3.client(
                'sagemaker-runtime',
                region_name=config.AWS_REGION,
                config=BotoConfig(
                    connect_timeout=self.timeout,
                    read_timeout=self.timeout,
                    retries={'max_attempts': 1}
                )
            )
        return self._client

    def _invoke(self, payload: Dict[str, Any]) -> bytes:
        if not self.endpoint_name:
            raise AIServiceUnavailable('No SageMaker endpoint configured')
        try:
            response = self.client.invoke_endpoint(
                EndpointName=self.endpoint_name,
                ContentType='application/json',
                Accept='application/json',
                Body=json.dumps(payload, default=str)
            )
            return response['Body'].read()
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error invoking SageMaker endpoint {self.endpoint_name}: {e}")
            raise AIServiceUnavailable('AI validation endpoint failed')

    def score(
        self,
        title: str,
        description: str,
        comment: str,
        time_taken: int,
        has_attachment: bool = False
    ) -> ScoreResult:
        body = self._invoke({
            'mode': 'validate',
            'title': title,
            'description': description,
            'comment': comment,
            'time_taken': time_taken,
            'has_attachment': has_attachment,
        })
        result = parse_score_payload(body)
        logger.info(f"SageMaker endpoint {self.endpoint_name} scored submission: score={result.score}")
        return result

    def review(self, title: str, description: str, submission_text: str) -> ReviewResult:
        body = self._invoke({
            'mode': 'review',
            'title': title,
            'description': description,
            'submission': submission_text,
        })
        return parse_review_payload(body)


def get_scorer():
    """Build the scorer selected by SCORING_BACKEND."""
    if config.SCORING_BACKEND == 'sagemaker':
        return SageMakerScorer()
    return OpenAIScorer()
