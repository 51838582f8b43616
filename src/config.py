import os

# Minimum cosine similarity to accept a candidate as the same person.
# Raise it if you see false accepts, lower it if enrolled people are not recognized.
# Tuned for 128-d MobileFaceNet descriptors; other models need their own value.
SIMILARITY_THRESHOLD = float(os.getenv("FACE_MATCH_THRESHOLD", "0.6"))

# Descriptor length produced by the reference model. Informational only:
# matching works on any length as long as compared vectors agree.
EMBEDDING_SIZE = 128

# Input side (pixels) the reference model expects for a face crop.
MODEL_INPUT_SIZE = 112

# How many ranked candidates to report when debugging a match.
TOPK_DEBUG = 5

# Matching backend: "auto" (torch on CUDA when available, else numpy), "numpy" or "torch".
MATCH_BACKEND = os.getenv("FACE_MATCH_BACKEND", "auto")

# Persisted gallery
GALLERY_FILENAME = "gallery_embeddings.json"
GALLERY_SCHEMA_VERSION = "v1"

LOG_LEVEL = os.getenv("FACE_MATCH_LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
