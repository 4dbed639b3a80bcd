##########################################################################################
#
# Script name: errors.py
#
# Description: Exception hierarchy shared by the discovery pipeline and CLI.
#
##########################################################################################


# ****************************************************************************************
# Exceptions
# ****************************************************************************************

class Error(Exception):
    '''
    Base class for exceptions in this package.
    '''
    pass


class RequestError(Error):
    '''
    Raised when a URL that must be fetched cannot be.
    '''
    def __init__(self, url: str, reason: str = ''):
        self.url = url
        self.message = f'Failed to fetch URL: {url}'
        if reason:
            self.message = f'{self.message} ({reason})'
        super().__init__(self.message)


class ConfigError(Error):
    pass


class DiscoveryCycleError(Error):
    '''
    Raised when a discovery cycle fails outright. The run row has already been
    written (best-effort) by the time this propagates.
    '''
    pass


class ScoreConflictError(Error):
    def __init__(self, domain_id: int, attempts: int):
        self.domain_id = domain_id
        self.message = f'Score for domain {domain_id} changed concurrently on {attempts} attempts'
        super().__init__(self.message)
