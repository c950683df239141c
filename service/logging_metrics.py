"""
LLM Metrics Logging
Observability for plan generation jobs and the LLM calls behind them
"""

import logging
from typing import Dict, Any, Optional
from datetime import datetime

logger = logging.getLogger(__name__)


class LLMMetrics:
    """Structured one-line logging for LLM job observability"""

    @staticmethod
    def log_plan_generation_job(
        job_id: str,
        latency_ms: int,
        attempts: int,
        month_count: int,
        campaign_count: int,
        formats_repaired: int,
        total_budget: float,
        success: bool,
        failure_cause: Optional[str] = None,
        owner_id: Optional[str] = None
    ):
        """
        Log PLAN_GENERATION job metrics

        Args:
            job_id: Unique job identifier
            latency_ms: Job latency in milliseconds, retries and delays included
            attempts: Number of upstream calls made
            month_count: Number of month buckets requested
            campaign_count: Number of campaigns in the returned draft
            formats_repaired: Number of (channel, format) pairs replaced
            total_budget: Budget the draft was conserved to
            success: Whether a draft was produced
            failure_cause: overloaded / quota_exceeded / generic when failed
            owner_id: Optional plan owner identifier
        """
        log_data = {
            'event': 'PLAN_GENERATION_JOB',
            'job_id': job_id,
            'owner_id': owner_id,
            'latency_ms': latency_ms,
            'attempts': attempts,
            'month_count': month_count,
            'campaign_count': campaign_count,
            'formats_repaired': formats_repaired,
            'total_budget': total_budget,
            'success': success,
            'failure_cause': failure_cause,
            'timestamp': datetime.utcnow().isoformat()
        }

        status_emoji = '✅' if success else '❌'
        logger.info(f"{status_emoji} PLAN_GENERATION_JOB | job={job_id[:8]} | " +
                    f"latency={latency_ms}ms | attempts={attempts} | " +
                    f"months={month_count} | campaigns={campaign_count} | " +
                    f"repaired={formats_repaired} | budget={total_budget:.2f}" +
                    (f" | cause={failure_cause}" if failure_cause else ""))

        return log_data

    @staticmethod
    def log_generation_retry(
        job_id: str,
        attempt: int,
        max_attempts: int,
        delay_seconds: float,
        error: str
    ):
        """Log a transient upstream failure that will be retried"""
        log_data = {
            'event': 'GENERATION_RETRY',
            'job_id': job_id,
            'attempt': attempt,
            'max_attempts': max_attempts,
            'delay_seconds': delay_seconds,
            'error': error,
            'timestamp': datetime.utcnow().isoformat()
        }

        logger.warning(f"🔁 GENERATION_RETRY | job={job_id[:8]} | " +
                       f"attempt={attempt}/{max_attempts} | retry_in={delay_seconds}s | error={error[:120]}")

        return log_data

    @staticmethod
    def log_llm_call(
        task: str,
        provider: str,
        model: str,
        temperature: float,
        latency_ms: int,
        prompt_length: int,
        response_length: int,
        success: bool,
        error: Optional[str] = None
    ):
        """
        Log individual LLM API call metrics

        Args:
            task: Task name (PLAN, IMAGES, KEYWORDS)
            provider: Provider name (gemini)
            model: Model name
            temperature: Temperature used
            latency_ms: Call latency in milliseconds
            prompt_length: Prompt character count
            response_length: Response character count
            success: Whether call succeeded
            error: Error message if failed
        """
        log_data = {
            'event': 'LLM_CALL',
            'task': task,
            'provider': provider,
            'model': model,
            'temperature': temperature,
            'latency_ms': latency_ms,
            'prompt_length': prompt_length,
            'response_length': response_length,
            'success': success,
            'error': error,
            'timestamp': datetime.utcnow().isoformat()
        }

        status = '✅' if success else '❌'
        logger.debug(f"{status} LLM_CALL | task={task} | {provider}:{model} | " +
                     f"temp={temperature} | latency={latency_ms}ms | " +
                     f"prompt={prompt_length}ch | response={response_length}ch" +
                     (f" | error={error}" if error else ""))

        return log_data

    @staticmethod
    def calculate_aggregate_metrics(job_logs: list) -> Dict[str, Any]:
        """
        Calculate aggregate metrics from job logs

        Args:
            job_logs: List of job log dictionaries

        Returns:
            dict with aggregate statistics
        """
        if not job_logs:
            return {}

        generation_jobs = [j for j in job_logs if j.get('event') == 'PLAN_GENERATION_JOB']
        retries = [j for j in job_logs if j.get('event') == 'GENERATION_RETRY']

        aggregates = {
            'total_jobs': len(generation_jobs),
            'retry_events': len(retries),
            'avg_latency_ms': (sum(j.get('latency_ms', 0) for j in generation_jobs) / len(generation_jobs)
                               if generation_jobs else 0),
            'generation_metrics': {}
        }

        if generation_jobs:
            failures = [j for j in generation_jobs if not j.get('success')]
            aggregates['generation_metrics'] = {
                'success_rate': (len(generation_jobs) - len(failures)) / len(generation_jobs),
                'avg_attempts': sum(j.get('attempts', 0) for j in generation_jobs) / len(generation_jobs),
                'avg_formats_repaired': sum(j.get('formats_repaired', 0) for j in generation_jobs) / len(generation_jobs),
                'failure_causes': {
                    cause: sum(1 for j in failures if (j.get('failure_cause') or 'unknown') == cause)
                    for cause in sorted({j.get('failure_cause') or 'unknown' for j in failures})
                }
            }

        logger.info(f"📊 AGGREGATE_METRICS | total_jobs={aggregates['total_jobs']} | " +
                    f"avg_latency={aggregates['avg_latency_ms']:.0f}ms | retries={len(retries)}")

        return aggregates
