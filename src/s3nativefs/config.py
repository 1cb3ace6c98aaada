import io
import os
import ZConfig


SCHEMA_PATH = os.path.join(os.path.dirname(__file__), "schema.xml")

_schema = None


def get_schema():
    global _schema
    if _schema is None:
        with open(SCHEMA_PATH) as f:
            _schema = ZConfig.loadSchemaFile(f, SCHEMA_PATH)
    return _schema


class NativeS3FileSystemFactory:
    """ZConfig factory for NativeS3FileSystem."""

    def __init__(self, config):
        self.name = config.getSectionName()
        self.config = config

    def options(self):
        from s3nativefs.filesystem import FileSystemOptions

        config = self.config
        return FileSystemOptions(
            block_size=config.block_size,
            read_buffer_size=config.read_buffer_size,
            max_retries=config.max_retries,
            sleep_seconds=config.sleep_time_seconds,
            algorithm_version=config.reader_algorithm_version,
            buffer_dir=config.buffer_dir,
        )

    def open(self):
        from s3nativefs.filesystem import NativeS3FileSystem

        config = self.config
        return NativeS3FileSystem.for_bucket(
            config.bucket_name,
            self.options(),
            prefix=config.s3_prefix,
            endpoint_url=config.s3_endpoint_url,
            region_name=config.s3_region,
            aws_access_key_id=config.s3_access_key,
            aws_secret_access_key=config.s3_secret_key,
            use_ssl=config.s3_use_ssl,
            addressing_style=config.s3_addressing_style,
        )


def filesystem_from_file(f):
    """Open the filesystem described by a configuration file object."""
    config, _handler = ZConfig.loadConfigFile(get_schema(), f)
    return config.filesystem.open()


def filesystem_from_string(text):
    return filesystem_from_file(io.StringIO(text))
