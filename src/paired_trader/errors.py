class PairedTraderError(Exception):
    pass


class UpstreamDataError(PairedTraderError):
    """Balance or trade-tape fetch failed; the run cannot continue."""


class ConfigError(PairedTraderError):
    pass
