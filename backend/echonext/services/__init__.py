"""Service layer for EchoNext.

Services wrap the language-model API and choose the prediction source
for each utterance.
"""
