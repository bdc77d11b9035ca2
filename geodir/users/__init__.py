from geodir.users.repository import PostgresUserDirectory, UserAccount, UserDirectory

__all__ = ["PostgresUserDirectory", "UserAccount", "UserDirectory"]
