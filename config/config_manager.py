import argparse
import configparser
import logging
import os

CONFIG_DIR = os.path.dirname(os.path.abspath(__file__))


class ConfigManager:
    def __init__(self, config_file='localhost.conf', config_dir=CONFIG_DIR,
                 default_config_file='default_config.ini', args=None):
        self.config_file = config_file
        self.config_dir = config_dir
        self.default_config_file = default_config_file
        self.config = configparser.ConfigParser()
        self.load_config(args)

    def stream_uri(self):
        host = self.get('mjpeg_server', 'public_host', fallback='localhost')
        port = self.getint('mjpeg_server', 'port', fallback=8080)
        return f'http://{host}:{port}/'

    @staticmethod
    def parse_arguments(argv=None):
        parser = argparse.ArgumentParser(description='Run the MJPEG camera streamer.')
        parser.add_argument('-d', '--config-dir', type=str, help='Directory containing the configuration file')
        parser.add_argument('-f', '--config-file', type=str, help='Name of the configuration file')
        return parser.parse_args(argv)

    def load_config(self, args=None):
        if args is not None:
            if args.config_file:
                self.config_file = args.config_file
            if args.config_dir:
                self.config_dir = args.config_dir
        self.config_file = os.path.join(self.config_dir, self.config_file)

        if os.path.exists(self.config_file):
            self.config.read(self.config_file)
        else:
            self.load_default_config()
            self.create_default_config()

    def load_default_config(self):
        self.default_config = configparser.ConfigParser()
        default_config_file = os.path.join(self.config_dir, self.default_config_file)
        if not os.path.exists(default_config_file):
            # fall back to the defaults shipped next to this module
            default_config_file = os.path.join(CONFIG_DIR, self.default_config_file)
        if os.path.exists(default_config_file):
            self.default_config.read(default_config_file)
        else:
            raise FileNotFoundError(f"Default config file '{self.default_config_file}' not found.")

    def create_default_config(self):
        # Copy default config to main config
        for section in self.default_config.sections():
            if not self.config.has_section(section):
                self.config.add_section(section)
            for key, value in self.default_config.items(section):
                if not self.config.has_option(section, key):
                    self.config.set(section, key, value)

        # Write the default config to the specified config file
        with open(self.config_file, 'w') as file:
            self.config.write(file)
        logging.info(f"Created config file {self.config_file} from defaults")

    def get(self, section, key, fallback=None):
        return self.config.get(section, key, fallback=fallback)

    def getint(self, section, key, fallback=None):
        return self.config.getint(section, key, fallback=fallback)

    def getfloat(self, section, key, fallback=None):
        return self.config.getfloat(section, key, fallback=fallback)

    def getboolean(self, section, key, fallback=None):
        return self.config.getboolean(section, key, fallback=fallback)

    def get_section_items(self, section):
        if self.config.has_section(section):
            return dict(self.config.items(section))
        return {}


def setup_logging(config_manager):
    """Configure the root logger from the [logging] section."""
    level_name = config_manager.get('logging', 'level', fallback='INFO').upper()
    filename = config_manager.get('logging', 'filename', fallback='') or None
    logging.basicConfig(
        filename=filename,
        level=getattr(logging, level_name, logging.INFO),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )
