class BalanceError(Exception):
    pass


class BalanceUserNotFoundError(BalanceError):
    pass


class BalanceAdjustmentError(BalanceError):
    pass


class UserAlreadyExistsError(BalanceError):
    pass
