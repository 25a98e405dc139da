import logging

from django.apps import AppConfig

logger = logging.getLogger(__name__)


def log_sheet_change(sender, instance, message, **kwargs):
    logger.info("[%s] %s", instance, message)


class SheetsConfig(AppConfig):
    name = 'sheets'
    verbose_name = 'Spreadsheets'

    def ready(self):
        from .signals import sheet_changed

        sheet_changed.connect(log_sheet_change, dispatch_uid='sheets.log_sheet_change')
