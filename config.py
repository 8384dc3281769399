from dataclasses import dataclass, field
from typing import List
import yaml
from pathlib import Path


DEFAULT_MODELS = ["InceptionV3", "MobileNet", "ResNet50", "VGG16", "Xception"]


@dataclass
class FeatureStoreConfig:
    """Configuration for the on-disk feature repository"""
    index_root: str = "data/index"
    image_namespace: str = "image"  # Logical prefix of every image key
    image_extension: str = ".jpg"
    models: List[str] = field(default_factory=lambda: list(DEFAULT_MODELS))
    cache_stores: bool = True
    cache_size: int = 5  # Number of model stores kept in memory
    show_progress: bool = False


@dataclass
class RetrievalConfig:
    """Configuration for neighbor ranking"""
    default_metric: str = "Euclidean"
    allowed_k: List[int] = field(default_factory=lambda: [20, 50])
    default_k: int = 20
    evaluation_window: int = 100  # Candidates scored for recall-precision
    n_workers: int = 1  # >1 scores the store on a thread pool


@dataclass
class EvaluationConfig:
    """Configuration for recall-precision evaluation"""
    class_size: int = 100  # Images per ground-truth class


@dataclass
class SystemConfig:
    """System-wide configuration"""
    log_level: str = "INFO"
    log_dir: str = "logs"

    # Feature store
    feature_store: FeatureStoreConfig = field(
        default_factory=FeatureStoreConfig
    )

    # Retrieval
    retrieval: RetrievalConfig = field(
        default_factory=RetrievalConfig
    )

    # Evaluation
    evaluation: EvaluationConfig = field(
        default_factory=EvaluationConfig
    )

    def save(self, path: str = "config.yaml"):
        """Save configuration to YAML file"""
        config_dict = {
            'log_level': self.log_level,
            'log_dir': self.log_dir,
            'feature_store': {
                'index_root': self.feature_store.index_root,
                'image_namespace': self.feature_store.image_namespace,
                'image_extension': self.feature_store.image_extension,
                'models': list(self.feature_store.models),
                'cache_stores': self.feature_store.cache_stores,
                'cache_size': self.feature_store.cache_size,
                'show_progress': self.feature_store.show_progress
            },
            'retrieval': {
                'default_metric': self.retrieval.default_metric,
                'allowed_k': list(self.retrieval.allowed_k) if self.retrieval.allowed_k is not None else None,
                'default_k': self.retrieval.default_k,
                'evaluation_window': self.retrieval.evaluation_window,
                'n_workers': self.retrieval.n_workers
            },
            'evaluation': {
                'class_size': self.evaluation.class_size
            }
        }

        with open(path, 'w') as f:
            yaml.dump(config_dict, f, default_flow_style=False, indent=2)

    @classmethod
    def load(cls, path: str = "config.yaml") -> 'SystemConfig':
        """Load configuration from YAML file"""
        if not Path(path).exists():
            return cls()  # Return default config

        with open(path, 'r') as f:
            config_dict = yaml.safe_load(f) or {}

        config = cls()

        # Load system settings
        config.log_level = config_dict.get('log_level', config.log_level)
        config.log_dir = config_dict.get('log_dir', config.log_dir)

        # Load feature store settings
        if 'feature_store' in config_dict:
            fs = config_dict['feature_store']
            config.feature_store = FeatureStoreConfig(
                index_root=fs.get('index_root', config.feature_store.index_root),
                image_namespace=fs.get('image_namespace', config.feature_store.image_namespace),
                image_extension=fs.get('image_extension', config.feature_store.image_extension),
                models=fs.get('models', config.feature_store.models),
                cache_stores=fs.get('cache_stores', config.feature_store.cache_stores),
                cache_size=fs.get('cache_size', config.feature_store.cache_size),
                show_progress=fs.get('show_progress', config.feature_store.show_progress)
            )

        # Load retrieval settings
        if 'retrieval' in config_dict:
            rt = config_dict['retrieval']
            config.retrieval = RetrievalConfig(
                default_metric=rt.get('default_metric', config.retrieval.default_metric),
                allowed_k=rt.get('allowed_k', config.retrieval.allowed_k),
                default_k=rt.get('default_k', config.retrieval.default_k),
                evaluation_window=rt.get('evaluation_window', config.retrieval.evaluation_window),
                n_workers=rt.get('n_workers', config.retrieval.n_workers)
            )

        # Load evaluation settings
        if 'evaluation' in config_dict:
            ev = config_dict['evaluation']
            config.evaluation = EvaluationConfig(
                class_size=ev.get('class_size', config.evaluation.class_size)
            )

        return config
