"""
Planificateur APScheduler : purge horaire des tâches de nettoyage expirées (plus de 2 h).
"""

import logging

from apscheduler.schedulers.background import BackgroundScheduler

from app.dependencies import purge_expired_jobs

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler()


def _purge_cleanup_jobs_scheduled() -> None:
    """Tâche planifiée : supprime l'état des tâches de nettoyage expirées."""
    try:
        purged = purge_expired_jobs()
        if purged:
            logger.info("Purge planifiée : %d tâche(s) expirée(s) supprimée(s)", purged)
    except Exception as exc:
        logger.error("Erreur lors de la purge des tâches de nettoyage : %s", exc)


def start_scheduler() -> None:
    """Démarre le planificateur en arrière-plan (appelé au démarrage de l'API)."""
    scheduler.add_job(
        _purge_cleanup_jobs_scheduled,
        trigger="interval",
        hours=1,
        id="cleanup_jobs_purge",
        replace_existing=True,
    )
    scheduler.start()
    logger.info("Scheduler démarré : purge des tâches de nettoyage toutes les heures.")


def stop_scheduler() -> None:
    """Arrête le planificateur proprement (appelé à l'arrêt de l'API)."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler arrêté.")
