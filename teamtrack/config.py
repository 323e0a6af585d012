import os


class Config:
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-prod')

    # Document store
    STORE_BACKEND = os.getenv('STORE_BACKEND', 'memory')
    REDIS_URL = os.getenv('REDIS_URL', 'redis://localhost:6379')
    STORE_KEY_PREFIX = os.getenv('STORE_KEY_PREFIX', 'teamtrack')

    # Identity provider
    IDENTITY_BACKEND = os.getenv('IDENTITY_BACKEND', 'memory')
    IDENTITY_SERVICE_URL = os.getenv('IDENTITY_SERVICE_URL', 'http://localhost:9099')
    IDENTITY_SERVICE_TIMEOUT = float(os.getenv('IDENTITY_SERVICE_TIMEOUT', '10'))

    # Tournaments
    MAX_ORGANIZERS_PER_TOURNAMENT = int(os.getenv('MAX_ORGANIZERS_PER_TOURNAMENT', '5'))

    # Notifications over Redis pub/sub
    PUBLISH_EVENTS = os.getenv('PUBLISH_EVENTS', 'false').lower() == 'true'

    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')


class DevelopmentConfig(Config):
    DEBUG = True
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'DEBUG')


class ProductionConfig(Config):
    DEBUG = False
    STORE_BACKEND = os.getenv('STORE_BACKEND', 'redis')
    IDENTITY_BACKEND = os.getenv('IDENTITY_BACKEND', 'http')


class TestingConfig(Config):
    TESTING = True
    DEBUG = False
    STORE_BACKEND = 'memory'
    IDENTITY_BACKEND = 'memory'
    PUBLISH_EVENTS = False


config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}
