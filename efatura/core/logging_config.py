"""
Configurazione logging condivisa
"""
import logging

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(level: int = logging.INFO) -> None:
    """Applica il formato di log standard al root logger"""
    logging.basicConfig(level=level, format=LOG_FORMAT)
    # zeep è molto verboso a livello DEBUG
    logging.getLogger("zeep").setLevel(logging.WARNING)
