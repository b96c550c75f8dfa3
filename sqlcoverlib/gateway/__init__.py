from .database import DatabaseGateway, SqlAlchemyDatabaseGateway, to_sqlalchemy_url
from .source import DatabaseSourceGateway, ModuleInfo, SourceGateway
from .process import ProcessRunner, SubprocessRunner
