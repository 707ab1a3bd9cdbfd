#!/usr/bin/env python3

"""
cache.py

On-disk cache for pass-1 activity scores, one .npy file per key. The key is
a sha256 of the identity of every input file and the settings that shaped the scores,
so touching the video or changing the proxy filter invalidates it.
"""

# Standard Library
import os

# PIP3 modules
import numpy

# local repo modules
from smushlib.core import utils

#============================================

class ScoreCache():
	def __init__(self, cache_dir: str):
		self.cache_dir = cache_dir

	#============================
	def key_for(self, input_files, settings: dict) -> str:
		"""
		Key for one input file or an ordered list of them.
		"""
		if isinstance(input_files, str):
			input_files = [input_files]
		return utils.stable_hash_mapping({
			"inputs": [utils.file_identity(path) for path in input_files],
			"settings": settings,
		})

	#============================
	def path_for(self, key: str) -> str:
		return os.path.join(self.cache_dir, f"scores_{key[:16]}.npy")

	#============================
	def load(self, key: str):
		"""
		Return the cached score array, or None on a miss.
		"""
		path = self.path_for(key)
		if not os.path.isfile(path):
			return None
		utils.log(f"Using cached scores: {path}")
		return numpy.load(path, allow_pickle=False)

	#============================
	def store(self, key: str, scores) -> str:
		os.makedirs(self.cache_dir, exist_ok=True)
		path = self.path_for(key)
		temp_path = f"{path}.tmp.npy"
		numpy.save(temp_path, numpy.asarray(scores), allow_pickle=False)
		os.replace(temp_path, path)
		utils.log(f"Cached scores: {path}")
		return path
