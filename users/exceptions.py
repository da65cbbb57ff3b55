"""
Domain errors shared by the rewards, referral and fraud services.

Every error carries a stable ``code`` so API layers can surface the specific
reason without parsing messages.
"""


class RewardsError(Exception):
    code = 'rewards_error'

    def __init__(self, message='', code=None, **details):
        super().__init__(message or self.code)
        if code:
            self.code = code
        self.details = details

    @property
    def message(self):
        return str(self)


class NotFound(RewardsError):
    code = 'not_found'


class AlreadyAwarded(RewardsError):
    code = 'already_awarded'


class NotEligible(RewardsError):
    code = 'not_eligible'


class LimitExceeded(RewardsError):
    code = 'limit_exceeded'


class ValidationError(RewardsError):
    code = 'validation_error'


class EngineSystemError(RewardsError):
    code = 'system_error'
