"""One-time startup wiring for the build trigger bot."""

from __future__ import annotations

from dataclasses import dataclass

from src.config import Settings, SettingsError
from src.github_client import GitHubInstallationClient
from src.jenkins_client import JenkinsClient
from src.logger import get_logger, log_failure
from src.queue import configure_card_event_handler
from src.repo_config import load_default_config
from src.services.approval_state import ReviewApprovalOracle
from src.services.card_router import CardEventRouter
from src.services.trigger_scheduler import TriggerScheduler

logger = get_logger()


@dataclass
class TriggerBot:
    settings: Settings
    github: GitHubInstallationClient
    jenkins: JenkinsClient
    scheduler: TriggerScheduler
    router: CardEventRouter

    async def shutdown(self) -> None:
        configure_card_event_handler(None)
        await self.scheduler.shutdown()
        await self.jenkins.aclose()
        await self.github.aclose()


def activate_trigger_bot(settings: Settings) -> TriggerBot | None:
    """Install the router and periodic sweep, or return None when inactive.

    Must be called from a running event loop.
    """

    jenkins_url = settings.normalized_jenkins_url
    if jenkins_url is None:
        logger.info("Jenkins is not configured, not loading the build trigger bot")
        return None

    try:
        credentials = settings.require_github_credentials()
    except SettingsError as exc:
        log_failure(logger, "Build trigger bot disabled", exc)
        return None

    github = GitHubInstallationClient(
        base_url=settings.normalized_github_api_base_url,
        app_id=credentials.github_app_id,
        private_key_pem=credentials.github_private_key_pem,
    )
    jenkins = JenkinsClient(
        jenkins_url,
        user=settings.jenkins_user,
        api_token=settings.jenkins_api_token,
    )
    scheduler = TriggerScheduler(
        oracle=ReviewApprovalOracle(required_approvals=settings.required_approvals),
        job_runner=jenkins,
        dry_run=settings.dry_run,
        sweep_interval=settings.sweep_interval_seconds,
    )
    router = CardEventRouter(
        github=github,
        scheduler=scheduler,
        config_path=settings.repo_config_path,
        default_config=load_default_config(settings.bot_config_path),
    )

    configure_card_event_handler(router.handle)
    scheduler.start()
    logger.info(f"Build trigger bot active (dry_run={settings.dry_run})")
    return TriggerBot(settings=settings, github=github, jenkins=jenkins, scheduler=scheduler, router=router)
