"""
api/sample_questions.py: built-in demo paper (no PDF or database needed)
"""

from upsc_cbt.models.question_model import Question

SAMPLE_QUESTIONS = [
    Question(
        id="sample_1",
        question_text="Which Article of the Constitution of India guarantees the Right to Constitutional Remedies?",
        options={"A": "Article 19", "B": "Article 21", "C": "Article 32", "D": "Article 44"},
        correct_answer="C",
        explanation="Article 32 lets a person move the Supreme Court for enforcement of Fundamental Rights.",
        topic="Polity",
        sub_topic="Fundamental Rights",
        difficulty_level="easy",
        source="mock",
    ),
    Question(
        id="sample_2",
        question_text="Which one of the following is the longest river of Peninsular India?",
        options={"A": "Godavari", "B": "Krishna", "C": "Narmada", "D": "Mahanadi"},
        correct_answer="A",
        explanation="The Godavari flows about 1,465 km and is often called the Dakshin Ganga.",
        topic="Geography",
        sub_topic="Drainage",
        difficulty_level="easy",
        source="mock",
    ),
    Question(
        id="sample_3",
        question_text="The Monetary Policy Committee of India is chaired by",
        options={
            "A": "the Union Finance Minister",
            "B": "the Governor of the Reserve Bank of India",
            "C": "the Chief Economic Adviser",
            "D": "the Vice-Chairman of NITI Aayog",
        },
        correct_answer="B",
        explanation="Under the RBI Act, 1934 (as amended in 2016) the RBI Governor is the ex officio chairperson.",
        topic="Economy",
        sub_topic="Monetary Policy",
        difficulty_level="medium",
        source="mock",
    ),
    Question(
        id="sample_4",
        question_text="In which year did Mahatma Gandhi undertake the Dandi March?",
        options={"A": "1920", "B": "1930", "C": "1942", "D": "1919"},
        correct_answer="B",
        explanation="The Salt March began on 12 March 1930 and reached Dandi on 6 April 1930.",
        topic="History",
        sub_topic="Modern India",
        difficulty_level="easy",
        source="mock",
    ),
    Question(
        id="sample_5",
        question_text="Which one of the following is the most abundant greenhouse gas in the Earth's atmosphere?",
        options={"A": "Carbon dioxide", "B": "Methane", "C": "Water vapour", "D": "Nitrous oxide"},
        correct_answer="C",
        explanation="Water vapour is the most abundant greenhouse gas, though its concentration is controlled by temperature.",
        topic="Environment",
        sub_topic="Climate Change",
        difficulty_level="medium",
        source="mock",
    ),
    Question(
        id="sample_6",
        question_text="The Hornbill Festival is celebrated in which State?",
        options={"A": "Assam", "B": "Nagaland", "C": "Manipur", "D": "Mizoram"},
        correct_answer="B",
        explanation="The Hornbill Festival is held every December at Kisama near Kohima, Nagaland.",
        topic="Art & Culture",
        sub_topic="Festivals",
        difficulty_level="easy",
        source="mock",
    ),
    Question(
        id="sample_7",
        question_text="Who administers the oath of office to the President of India?",
        options={
            "A": "The Vice-President of India",
            "B": "The Prime Minister of India",
            "C": "The Chief Justice of India",
            "D": "The Speaker of the Lok Sabha",
        },
        correct_answer="C",
        explanation="Article 60: the oath is made before the Chief Justice of India or, in absence, the senior-most Supreme Court judge.",
        topic="Polity",
        sub_topic="Union Executive",
        difficulty_level="medium",
        source="mock",
    ),
    Question(
        id="sample_8",
        question_text="Which of the following is the SI unit of electric current?",
        options={"A": "Ampere", "B": "Volt", "C": "Ohm", "D": "Coulomb"},
        correct_answer="A",
        explanation="The ampere is one of the seven SI base units.",
        topic="Science & Technology",
        sub_topic="Physics",
        difficulty_level="easy",
        source="mock",
    ),
]
